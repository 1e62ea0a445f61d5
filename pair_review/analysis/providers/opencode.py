"""OpenCode CLI (``opencode run --format json``).

OpenCode ships no built-in model list: models come from the ``models`` entry
of the provider's config, so the provider is unavailable until one is set.
"""

from __future__ import annotations

from typing import List

from pair_review.analysis.providers.base import ProviderSpec
from pair_review.analysis.streaming import extract_opencode_answer, parse_opencode_line
from pair_review.analysis.utils.sandbox import SandboxPolicy


def build_args(model: str, sandbox: SandboxPolicy) -> List[str]:
    # Tool permissions live in OpenCode's own config file.
    return ["run", "--model", model, "--format", "json"]


def build_extraction_args(model: str) -> List[str]:
    return ["run", "--model", model, "--format", "json"]


OPENCODE = ProviderSpec(
    id="opencode",
    name="OpenCode",
    default_command="opencode",
    build_args=build_args,
    install_instructions=(
        "Install OpenCode: curl -fsSL https://opencode.ai/install | bash\n"
        "Or visit: https://opencode.ai"
    ),
    build_extraction_args=build_extraction_args,
    parse_stream_line=parse_opencode_line,
    extract_answer=extract_opencode_answer,
)
