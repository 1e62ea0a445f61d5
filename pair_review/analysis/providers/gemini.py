"""Google Gemini CLI in stream-json output mode."""

from __future__ import annotations

from typing import List

from pair_review.analysis.contracts import ProviderModel
from pair_review.analysis.providers.base import ProviderSpec
from pair_review.analysis.streaming import extract_gemini_answer, parse_gemini_line
from pair_review.analysis.utils.sandbox import SandboxPolicy

MODELS = (
    ProviderModel(id="gemini-3-flash-preview", tier="fast", name="Gemini 3 Flash"),
    ProviderModel(id="gemini-2.5-pro", tier="balanced", name="Gemini 2.5 Pro", default=True),
    ProviderModel(id="gemini-3-pro-preview", tier="thorough", name="Gemini 3 Pro"),
)

READ_TOOLS = ("read_file", "read_many_files", "list_directory", "glob", "search_file_content")


def build_args(model: str, sandbox: SandboxPolicy) -> List[str]:
    args = ["-m", model, "-o", "stream-json"]
    if sandbox.unrestricted:
        return args + ["-y"]
    shell_tools = [f"run_shell_command({command})" for command in sandbox.rendered_allowed()]
    return args + ["--allowed-tools", ",".join([*READ_TOOLS, *shell_tools])]


def build_extraction_args(model: str) -> List[str]:
    return ["-m", model, "-o", "text"]


GEMINI = ProviderSpec(
    id="gemini",
    name="Gemini",
    default_command="gemini",
    build_args=build_args,
    models=MODELS,
    install_instructions="Install Gemini CLI: npm install -g @google/gemini-cli",
    build_extraction_args=build_extraction_args,
    parse_stream_line=parse_gemini_line,
    extract_answer=extract_gemini_answer,
)
