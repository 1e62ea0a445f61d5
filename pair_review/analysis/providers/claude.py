"""Claude Code CLI (``claude -p``) in stream-json mode."""

from __future__ import annotations

from typing import List

from pair_review.analysis.contracts import ProviderModel
from pair_review.analysis.providers.base import ProviderSpec
from pair_review.analysis.streaming import extract_claude_answer, parse_claude_line
from pair_review.analysis.utils.sandbox import SandboxPolicy

MODELS = (
    ProviderModel(id="haiku", tier="fast", name="Haiku", description="Quick, surface-level review"),
    ProviderModel(
        id="sonnet", tier="balanced", name="Sonnet", description="Everyday code review", default=True
    ),
    ProviderModel(id="opus", tier="thorough", name="Opus", description="Deep analysis for complex code"),
)

READ_TOOLS = ("Read", "Grep", "Glob")


def _bash_rules(commands) -> str:
    return ",".join(f"Bash({command}*)" for command in commands)


def build_args(model: str, sandbox: SandboxPolicy) -> List[str]:
    args = [
        "-p",
        "--verbose",
        "--output-format",
        "stream-json",
        "--include-partial-messages",
        "--model",
        model,
    ]
    if sandbox.unrestricted:
        return args + ["--dangerously-skip-permissions"]

    allowed = ",".join(READ_TOOLS)
    rules = sandbox.rendered_allowed()
    if rules:
        allowed = f"{allowed},{_bash_rules(rules)}"
    args += ["--allowedTools", allowed]
    if sandbox.denied:
        args += ["--disallowedTools", f"Write,Edit,{_bash_rules(sandbox.denied)}"]
    return args


def build_extraction_args(model: str) -> List[str]:
    return ["-p", "--model", model, "--output-format", "text", "--tools", ""]


CLAUDE = ProviderSpec(
    id="claude",
    name="Claude",
    default_command="claude",
    build_args=build_args,
    models=MODELS,
    install_instructions="Install Claude CLI: npm install -g @anthropic-ai/claude-code",
    build_extraction_args=build_extraction_args,
    parse_stream_line=parse_claude_line,
    extract_answer=extract_claude_answer,
)
