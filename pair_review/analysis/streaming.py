"""Normalization of reviewer stdout streams into canonical progress events.

Each reviewer program writes its own line-delimited protocol. A line parser
turns one complete line into zero or more ``StreamEvent`` objects; the
``StreamNormalizer`` takes care of splitting raw stdout chunks into complete
lines and dispatching the resulting events.
"""

from __future__ import annotations

import codecs
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from pair_review.analysis.constants import SNIPPET_LENGTH
from pair_review.analysis.contracts import StreamEvent, StreamEventKind

logger = logging.getLogger(__name__)
stream_logger = logging.getLogger("pair_review.stream")

COMMAND_FIELDS = ("command", "cmd", "description", "task", "pattern", "query")
PATH_FIELDS = ("file_path", "filePath", "path", "absolute_path")
MAX_PREVIEW_KEYS = 3

_WHITESPACE = re.compile(r"\s+")


@dataclass
class StreamContext:
    """Per-process options handed to line parsers."""

    cwd: Optional[str] = None
    trace: bool = False
    label: str = ""


LineParser = Callable[[str, StreamContext], List[StreamEvent]]


def truncate_snippet(text: Any, max_length: int = SNIPPET_LENGTH) -> str:
    """Collapse whitespace and cut text down to a display snippet."""
    if not text:
        return ""
    collapsed = _WHITESPACE.sub(" ", str(text)).strip()
    if len(collapsed) <= max_length:
        return collapsed
    return collapsed[:max_length] + "…"


def strip_path_prefix(file_path: str, cwd: Optional[str]) -> str:
    """Make ``file_path`` relative to ``cwd`` when it lives underneath it."""
    if not file_path or not cwd:
        return file_path or ""
    prefix = cwd if cwd.endswith("/") else cwd + "/"
    if file_path.startswith(prefix):
        return file_path[len(prefix) :]
    if file_path == cwd:
        return ""
    return file_path


def preview_arguments(arguments: Any, cwd: Optional[str] = None) -> str:
    """Derive a short human readable preview of a tool call's arguments.

    Preference order: a command-like field, a path-like field (made relative
    to ``cwd``), the first scalar field, then the first few key names.

    Args:
        arguments: Tool arguments as a mapping or a JSON-encoded string
        cwd: Working directory stripped from absolute paths

    Returns:
        Preview string, empty when nothing useful is present
    """
    if not arguments:
        return ""

    parsed = arguments
    if isinstance(arguments, str):
        try:
            parsed = json.loads(arguments)
        except ValueError:
            return arguments

    if not isinstance(parsed, dict):
        return parsed if isinstance(parsed, str) else ""

    for key in COMMAND_FIELDS:
        value = parsed.get(key)
        if isinstance(value, list):
            value = " ".join(str(part) for part in value)
        if value:
            return str(value)

    for key in PATH_FIELDS:
        value = parsed.get(key)
        if value and isinstance(value, str):
            return strip_path_prefix(value, cwd)

    for value in parsed.values():
        if isinstance(value, (str, int, float)) and not isinstance(value, bool) and value != "":
            return str(value)

    keys = list(parsed.keys())[:MAX_PREVIEW_KEYS]
    return ", ".join(keys)


def _load_record(line: str) -> Dict[str, Any]:
    record = json.loads(line)
    if not isinstance(record, dict):
        raise ValueError(f"expected a JSON object, got {type(record).__name__}")
    return record


def _text(text: Any) -> StreamEvent:
    return StreamEvent(kind=StreamEventKind.TEXT_DELTA, text=truncate_snippet(text))


def _tool_start(name: Optional[str], call_id: Any, arguments: Any, context: StreamContext) -> StreamEvent:
    tool_name = name or "unknown"
    detail = preview_arguments(arguments, context.cwd)
    text = f"{tool_name}: {detail}" if detail else tool_name
    return StreamEvent(
        kind=StreamEventKind.TOOL_CALL_START,
        text=truncate_snippet(text),
        tool_name=tool_name,
        correlation_id=str(call_id) if call_id is not None else None,
    )


def _tool_end(name: Optional[str], call_id: Any, failed: bool = False) -> StreamEvent:
    tool_name = name or "tool"
    return StreamEvent(
        kind=StreamEventKind.TOOL_CALL_END,
        text=f"{tool_name} failed" if failed else f"{tool_name} done",
        tool_name=name,
        correlation_id=str(call_id) if call_id is not None else None,
    )


def _summary(usage: Optional[Dict[str, Any]], fallback: str = "Turn complete") -> StreamEvent:
    parts = []
    if isinstance(usage, dict):
        for key in ("num_turns", "input_tokens", "output_tokens", "total_tokens", "duration_ms"):
            if usage.get(key) is not None:
                parts.append(f"{key}={usage[key]}")
    text = f"{fallback} ({', '.join(parts)})" if parts else fallback
    return StreamEvent(kind=StreamEventKind.TURN_SUMMARY, text=truncate_snippet(text))


# Claude: --output-format stream-json


def parse_claude_line(line: str, context: StreamContext) -> List[StreamEvent]:
    record = _load_record(line)
    record_type = record.get("type")

    if record_type == "stream_event":
        delta = (record.get("event") or {}).get("delta") or {}
        if delta.get("type") == "text_delta" and delta.get("text"):
            return [_text(delta["text"])]
        return []

    if record_type == "assistant":
        events = []
        for block in (record.get("message") or {}).get("content") or []:
            if block.get("type") == "text" and block.get("text"):
                events.append(_text(block["text"]))
            elif block.get("type") == "tool_use":
                events.append(_tool_start(block.get("name"), block.get("id"), block.get("input"), context))
        return events

    if record_type == "user":
        content = (record.get("message") or {}).get("content") or []
        return [
            _tool_end(None, block.get("tool_use_id"), failed=bool(block.get("is_error")))
            for block in content
            if isinstance(block, dict) and block.get("type") == "tool_result"
        ]

    if record_type == "result":
        usage = dict(record.get("usage") or {})
        usage.setdefault("num_turns", record.get("num_turns"))
        usage.setdefault("duration_ms", record.get("duration_ms"))
        return [_summary(usage)]

    return []


def extract_claude_answer(stdout: str) -> Optional[str]:
    """Concatenate the ``result`` fields of Claude's final records."""
    answers = [
        record["result"]
        for record in _iter_records(stdout)
        if record.get("type") == "result" and isinstance(record.get("result"), str)
    ]
    return "\n".join(answers) if answers else None


# Codex: exec --json

_CODEX_TOOL_ITEMS = ("command_execution", "function_call", "tool_call", "tool_use", "mcp_tool_call")


def _codex_tool_name(item: Dict[str, Any]) -> str:
    if item.get("type") == "command_execution":
        return "shell"
    return item.get("name") or item.get("tool") or "unknown"


def parse_codex_line(line: str, context: StreamContext) -> List[StreamEvent]:
    record = _load_record(line)
    record_type = record.get("type")
    item = record.get("item") or {}
    item_type = item.get("type")

    if record_type == "item.started" and item_type in _CODEX_TOOL_ITEMS:
        arguments = item.get("arguments") or item.get("input") or item.get("args")
        if arguments is None and item.get("command"):
            arguments = {"command": item["command"]}
        return [_tool_start(_codex_tool_name(item), item.get("id"), arguments, context)]

    if record_type == "item.completed":
        if item_type == "agent_message" and item.get("text"):
            return [_text(item["text"])]
        if item_type in _CODEX_TOOL_ITEMS:
            failed = item.get("status") == "failed" or bool(item.get("exit_code"))
            return [_tool_end(_codex_tool_name(item), item.get("id"), failed=failed)]
        return []

    if record_type == "turn.completed":
        return [_summary(record.get("usage"))]

    return []


def extract_codex_answer(stdout: str) -> Optional[str]:
    """Concatenate the text of every completed ``agent_message`` item."""
    answers = []
    for record in _iter_records(stdout):
        item = record.get("item") or {}
        if record.get("type") == "item.completed" and item.get("type") == "agent_message":
            if isinstance(item.get("text"), str):
                answers.append(item["text"])
    return "\n".join(answers) if answers else None


# Gemini: -o stream-json


def parse_gemini_line(line: str, context: StreamContext) -> List[StreamEvent]:
    record = _load_record(line)
    record_type = record.get("type")

    if record_type == "message":
        content = record.get("content")
        if record.get("role") == "assistant" and isinstance(content, str) and content.strip():
            return [_text(content)]
        return []

    if record_type == "tool_use":
        return [_tool_start(record.get("tool_name"), record.get("tool_id"), record.get("parameters"), context)]

    if record_type == "tool_result":
        return [_tool_end(None, record.get("tool_id"), failed=record.get("status") == "error")]

    if record_type == "result":
        return [_summary(record.get("stats"))]

    return []


def extract_gemini_answer(stdout: str) -> Optional[str]:
    """Join the assistant ``message`` records, which may arrive as deltas."""
    parts = [
        record["content"]
        for record in _iter_records(stdout)
        if record.get("type") == "message"
        and record.get("role") == "assistant"
        and isinstance(record.get("content"), str)
    ]
    return "".join(parts) if parts else None


# Pi: --mode json


def parse_pi_line(line: str, context: StreamContext) -> List[StreamEvent]:
    record = _load_record(line)
    record_type = record.get("type")

    if record_type == "message_update":
        event = record.get("assistantMessageEvent") or {}
        delta = event.get("delta")
        if event.get("type") == "text_delta" and isinstance(delta, str) and delta.strip():
            return [_text(delta)]
        return []

    if record_type == "tool_execution_start":
        return [_tool_start(record.get("toolName"), record.get("toolCallId"), record.get("args"), context)]

    if record_type == "tool_execution_end":
        return [_tool_end(record.get("toolName"), record.get("toolCallId"), failed=bool(record.get("isError")))]

    if record_type == "turn_end":
        usage = ((record.get("message") or {}).get("usage")) or record.get("usage")
        return [_summary(usage)]

    return []


def extract_pi_answer(stdout: str) -> Optional[str]:
    """Collect the text blocks of every assistant ``message_end`` record."""
    answers = []
    for record in _iter_records(stdout):
        message = record.get("message") or {}
        if record.get("type") != "message_end" or message.get("role") != "assistant":
            continue
        content = message.get("content")
        if isinstance(content, str):
            answers.append(content)
        elif isinstance(content, list):
            answers.extend(
                block["text"]
                for block in content
                if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
            )
    return "\n".join(answers) if answers else None


# Cursor Agent: -p --output-format stream-json


def _cursor_tool_call(tool_call: Dict[str, Any]) -> Optional[tuple]:
    """Return ``(name, arguments)`` for the single ``*ToolCall`` key of a tool_call record."""
    for key, value in tool_call.items():
        if key.endswith("ToolCall"):
            name = key[: -len("ToolCall")] or key
            arguments = (value or {}).get("args") if isinstance(value, dict) else None
            return name, arguments
    return None


def parse_cursor_agent_line(line: str, context: StreamContext) -> List[StreamEvent]:
    record = _load_record(line)
    record_type = record.get("type")

    if record_type == "assistant":
        for block in (record.get("message") or {}).get("content") or []:
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                return [_text(block["text"])]
        return []

    if record_type == "tool_call":
        found = _cursor_tool_call(record.get("tool_call") or {})
        name, arguments = found if found else ("unknown", None)
        if record.get("subtype") == "started":
            return [_tool_start(name, record.get("call_id"), arguments, context)]
        if record.get("subtype") == "completed":
            return [_tool_end(name, record.get("call_id"))]
        return []

    if record_type == "result":
        return [_summary({"duration_ms": record.get("duration_ms")})]

    return []


def extract_cursor_agent_answer(stdout: str) -> Optional[str]:
    """Complete assistant messages, else the ``result`` record.

    With partial output enabled, deltas carry a ``timestamp_ms``; the
    complete message repeating them does not.
    """
    messages = []
    results = []
    for record in _iter_records(stdout):
        if record.get("type") == "assistant" and not isinstance(record.get("timestamp_ms"), (int, float)):
            messages.extend(
                block["text"]
                for block in (record.get("message") or {}).get("content") or []
                if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
            )
        elif record.get("type") == "result" and isinstance(record.get("result"), str):
            results.append(record["result"])
    if messages:
        return "".join(messages)
    return "\n".join(results) if results else None


# OpenCode: run --format json


def _opencode_part(record: Dict[str, Any]) -> Dict[str, Any]:
    part = record.get("part")
    return part if isinstance(part, dict) else {}


def parse_opencode_line(line: str, context: StreamContext) -> List[StreamEvent]:
    record = _load_record(line)
    record_type = record.get("type")
    part = _opencode_part(record)

    if record_type == "text":
        text = part.get("text") or record.get("text")
        if isinstance(text, str) and text.strip():
            return [_text(text)]
        return []

    if record_type in ("tool_call", "tool_use"):
        name = part.get("tool") or part.get("name") or part.get("tool_name")
        state = part.get("state") if isinstance(part.get("state"), dict) else {}
        arguments = state.get("input") or part.get("input") or part.get("arguments")
        return [_tool_start(name, part.get("callID") or part.get("id"), arguments, context)]

    if record_type == "tool_result":
        failed = part.get("status") == "error" or (part.get("state") or {}).get("status") == "error"
        return [_tool_end(part.get("tool"), part.get("callID") or part.get("id"), failed=failed)]

    if record_type == "step_finish":
        tokens = part.get("tokens") if isinstance(part.get("tokens"), dict) else {}
        usage = {"input_tokens": tokens.get("input"), "output_tokens": tokens.get("output")}
        return [_summary(usage, fallback=f"Step {part.get('reason') or 'finished'}")]

    return []


def extract_opencode_answer(stdout: str) -> Optional[str]:
    """Accumulate text parts, whichever of OpenCode's shapes they arrive in."""
    texts = []
    for record in _iter_records(stdout):
        for part in record.get("parts") or []:
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str):
                texts.append(part["text"])
        if record.get("type") == "text":
            text = _opencode_part(record).get("text") or record.get("text")
            if isinstance(text, str):
                texts.append(text)
        content = record.get("content")
        if isinstance(content, list):
            texts.extend(
                block["text"]
                for block in content
                if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
            )
    return "".join(texts) if texts else None


# Plain text output (copilot)


def parse_plain_text_line(line: str, context: StreamContext) -> List[StreamEvent]:
    if not line.strip():
        return []
    return [_text(line)]


def _iter_records(stdout: str):
    for line in stdout.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            record = json.loads(line)
        except ValueError:
            continue
        if isinstance(record, dict):
            yield record


class StreamNormalizer:
    """Line buffer that turns raw stdout chunks into canonical events.

    Partial lines are kept until the newline that completes them arrives.
    Lines that fail to parse are logged and skipped; a failing event callback
    never stops the stream.
    """

    def __init__(
        self,
        parse_line: LineParser,
        on_event: Callable[[StreamEvent], None],
        context: Optional[StreamContext] = None,
    ) -> None:
        self.parse_line = parse_line
        self.on_event = on_event
        self.context = context or StreamContext()
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: Union[str, bytes]) -> None:
        """Feed one chunk of stdout; complete lines are processed immediately."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._process(line)

    def flush(self) -> None:
        """Process whatever partial line is left once the stream closes."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        self._process(remainder)

    def _process(self, line: str) -> None:
        line = line.rstrip("\r")
        if not line.strip():
            return

        prefix = self.context.label
        try:
            events = self.parse_line(line, self.context)
        except (ValueError, TypeError, AttributeError) as e:
            logger.debug(f"{prefix} Skipping unparseable stream line: {e}")
            return

        if self.context.trace:
            if events:
                stream_logger.debug(f"{prefix} {line[:SNIPPET_LENGTH]}")
            else:
                stream_logger.debug(f"{prefix} (dropped) {line[:SNIPPET_LENGTH]}")

        for event in events:
            try:
                self.on_event(event)
            except Exception as e:
                logger.warning(f"{prefix} Stream event callback failed: {e}")
