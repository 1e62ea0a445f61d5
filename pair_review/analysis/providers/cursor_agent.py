"""Cursor Agent CLI (``agent -p``) in stream-json mode, prompt read from stdin."""

from __future__ import annotations

from typing import List

from pair_review.analysis.contracts import ProviderModel
from pair_review.analysis.providers.base import ProviderSpec
from pair_review.analysis.streaming import extract_cursor_agent_answer, parse_cursor_agent_line
from pair_review.analysis.utils.sandbox import SandboxPolicy

MODELS = (
    ProviderModel(
        id="auto", tier="fast", name="Auto", description="Cursor picks the best model automatically"
    ),
    ProviderModel(id="gpt-5.2-codex-fast", tier="fast", name="GPT-5.2 Codex Fast"),
    ProviderModel(id="sonnet-4.5-thinking", tier="balanced", name="Sonnet 4.5 Thinking", default=True),
    ProviderModel(id="gemini-3-pro", tier="balanced", name="Gemini 3 Pro"),
    ProviderModel(id="gpt-5.2-codex-high", tier="thorough", name="GPT-5.2 Codex High"),
    ProviderModel(id="opus-4.5-thinking", tier="thorough", name="Opus 4.5 Thinking"),
)


def build_args(model: str, sandbox: SandboxPolicy) -> List[str]:
    # Cursor's own sandbox only has an on/off switch.
    mode = "disabled" if sandbox.unrestricted else "enabled"
    return [
        "-p",
        "--output-format",
        "stream-json",
        "--stream-partial-output",
        "--model",
        model,
        "--sandbox",
        mode,
    ]


def build_extraction_args(model: str) -> List[str]:
    return ["-p", "--output-format", "text", "--model", model]


CURSOR_AGENT = ProviderSpec(
    id="cursor-agent",
    name="Cursor",
    default_command="agent",
    build_args=build_args,
    models=MODELS,
    install_instructions=(
        "Install Cursor Agent CLI: https://cursor.com/docs/cli/using\n"
        'Run "agent login" to authenticate after installation.'
    ),
    build_extraction_args=build_extraction_args,
    parse_stream_line=parse_cursor_agent_line,
    extract_answer=extract_cursor_agent_answer,
)
