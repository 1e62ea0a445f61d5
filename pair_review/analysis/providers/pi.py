"""Pi coding agent in JSON event mode."""

from __future__ import annotations

from typing import List

from pair_review.analysis.contracts import ProviderModel
from pair_review.analysis.providers.base import ProviderSpec
from pair_review.analysis.streaming import extract_pi_answer, parse_pi_line
from pair_review.analysis.utils.sandbox import SandboxPolicy

MODELS = (
    ProviderModel(
        id="default",
        tier="balanced",
        name="Default",
        description="Whatever model pi is configured to use",
        default=True,
    ),
)

READ_ONLY_TOOLS = "read,bash,grep,find,ls"


def model_args(model: str) -> List[str]:
    """``default`` defers to pi's own config; ``provider/model`` selects both."""
    if not model or model == "default":
        return []
    if "/" in model:
        provider, name = model.split("/", 1)
        return ["--provider", provider, "--model", name]
    return ["--model", model]


def build_args(model: str, sandbox: SandboxPolicy) -> List[str]:
    args = ["-p", "--mode", "json", *model_args(model)]
    if not sandbox.unrestricted:
        args += ["--tools", READ_ONLY_TOOLS]
    return args + ["--no-session"]


def build_extraction_args(model: str) -> List[str]:
    return ["-p", "--mode", "json", *model_args(model), "--no-tools", "--no-session"]


PI = ProviderSpec(
    id="pi",
    name="Pi",
    default_command="pi",
    build_args=build_args,
    models=MODELS,
    install_instructions="Install Pi: npm install -g @mariozechner/pi-coding-agent",
    build_extraction_args=build_extraction_args,
    parse_stream_line=parse_pi_line,
    extract_answer=extract_pi_answer,
)
