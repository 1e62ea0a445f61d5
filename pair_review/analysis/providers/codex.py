"""OpenAI Codex CLI (``codex exec --json``), prompt read from stdin."""

from __future__ import annotations

from typing import List

from pair_review.analysis.contracts import ProviderModel
from pair_review.analysis.providers.base import ProviderSpec
from pair_review.analysis.streaming import extract_codex_answer, parse_codex_line
from pair_review.analysis.utils.sandbox import SandboxPolicy

MODELS = (
    ProviderModel(id="gpt-5.1-codex-mini", tier="fast", name="GPT-5.1 Codex Mini"),
    ProviderModel(id="gpt-5.1-codex-max", tier="balanced", name="GPT-5.1 Codex Max", default=True),
    ProviderModel(id="gpt-5.2-codex", tier="thorough", name="GPT-5.2 Codex"),
)


def build_args(model: str, sandbox: SandboxPolicy) -> List[str]:
    # Codex has no per-command rules; its read-only sandbox covers the denials.
    if sandbox.unrestricted:
        mode = ["--dangerously-bypass-approvals-and-sandbox"]
    else:
        mode = ["--sandbox", "read-only"]
    return ["exec", "-m", model, "--json", *mode, "-"]


def build_extraction_args(model: str) -> List[str]:
    return ["exec", "-m", model, "--json", "--sandbox", "read-only", "-"]


CODEX = ProviderSpec(
    id="codex",
    name="Codex",
    default_command="codex",
    build_args=build_args,
    models=MODELS,
    install_instructions="Install Codex CLI: npm install -g @openai/codex",
    build_extraction_args=build_extraction_args,
    parse_stream_line=parse_codex_line,
    extract_answer=extract_codex_answer,
)
