"""GitHub Copilot CLI.

Copilot only takes its prompt as the value of ``-p`` and prints plain text,
so every non-empty output line becomes a text event.
"""

from __future__ import annotations

from typing import List

from pair_review.analysis.contracts import ProviderModel
from pair_review.analysis.providers.base import ProviderSpec
from pair_review.analysis.streaming import parse_plain_text_line
from pair_review.analysis.utils.sandbox import SandboxPolicy

MODELS = (
    ProviderModel(id="gpt-5.1-codex-mini", tier="fast", name="GPT-5.1 Codex Mini"),
    ProviderModel(id="gemini-3-pro-preview", tier="balanced", name="Gemini 3 Pro", default=True),
    ProviderModel(id="gpt-5.1-codex-max", tier="thorough", name="GPT-5.1 Codex Max"),
    ProviderModel(id="claude-opus-4.5", tier="thorough", name="Claude Opus 4.5"),
)


def build_args(model: str, sandbox: SandboxPolicy) -> List[str]:
    args = ["--model", model]
    for command in sandbox.rendered_allowed():
        args += ["--allow-tool", f"shell({command})"]
    for command in sandbox.effective_denied():
        args += ["--deny-tool", f"shell({command})"]
    if not sandbox.unrestricted:
        args += ["--deny-tool", "write"]
    # Remaining tools are auto-approved to avoid interactive prompts.
    return args + ["--allow-all-tools", "--allow-all-paths", "-s"]


def build_extraction_args(model: str) -> List[str]:
    return ["--model", model, "-s"]


COPILOT = ProviderSpec(
    id="copilot",
    name="Copilot",
    default_command="copilot",
    build_args=build_args,
    models=MODELS,
    install_instructions="Install GitHub Copilot CLI: npm install -g @github/copilot",
    build_extraction_args=build_extraction_args,
    parse_stream_line=parse_plain_text_line,
    prompt_flag="-p",
)
