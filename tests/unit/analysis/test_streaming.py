"""Tests for stream normalization into canonical progress events."""

import json

import pytest

from pair_review.analysis.contracts import StreamEventKind
from pair_review.analysis.streaming import (
    StreamContext,
    StreamNormalizer,
    extract_claude_answer,
    extract_codex_answer,
    extract_cursor_agent_answer,
    extract_gemini_answer,
    extract_opencode_answer,
    extract_pi_answer,
    parse_claude_line,
    parse_codex_line,
    parse_cursor_agent_line,
    parse_gemini_line,
    parse_opencode_line,
    parse_pi_line,
    parse_plain_text_line,
    preview_arguments,
    strip_path_prefix,
    truncate_snippet,
)


def line(record) -> str:
    return json.dumps(record)


class TestSnippets:
    def test_collapses_whitespace(self):
        assert truncate_snippet("  a\n\n b\tc  ") == "a b c"

    def test_truncates_with_ellipsis(self):
        snippet = truncate_snippet("x" * 250)

        assert len(snippet) == 201
        assert snippet.endswith("…")

    def test_empty(self):
        assert truncate_snippet(None) == ""

    def test_strip_path_prefix(self):
        assert strip_path_prefix("/repo/src/app.py", "/repo") == "src/app.py"
        assert strip_path_prefix("/repo/src/app.py", "/repo/") == "src/app.py"
        assert strip_path_prefix("/other/app.py", "/repo") == "/other/app.py"
        assert strip_path_prefix("/repo", "/repo") == ""


class TestPreviewArguments:
    def test_command_wins(self):
        assert preview_arguments({"path": "/repo/a.py", "command": "git diff"}, "/repo") == "git diff"

    def test_command_list_is_joined(self):
        assert preview_arguments({"command": ["git", "log", "-1"]}) == "git log -1"

    def test_path_is_made_relative(self):
        assert preview_arguments({"file_path": "/repo/src/a.py", "limit": 10}, "/repo") == "src/a.py"

    def test_first_scalar(self):
        assert preview_arguments({"flag": True, "limit": 20, "name": "x"}) == "20"

    def test_key_names(self):
        assert preview_arguments({"a": [1], "b": {"c": 1}, "d": [], "e": None}) == "a, b, d"

    def test_json_string(self):
        assert preview_arguments('{"command": "ls"}') == "ls"

    def test_plain_string(self):
        assert preview_arguments("grep foo") == "grep foo"

    def test_empty(self):
        assert preview_arguments(None) == ""
        assert preview_arguments({}) == ""


class TestClaudeParser:
    def test_text_delta(self):
        events = parse_claude_line(
            line({"type": "stream_event", "event": {"delta": {"type": "text_delta", "text": "Looking"}}}),
            StreamContext(),
        )

        assert [(e.kind, e.text) for e in events] == [(StreamEventKind.TEXT_DELTA, "Looking")]

    def test_tool_use_and_result(self):
        context = StreamContext(cwd="/repo")
        start = parse_claude_line(
            line(
                {
                    "type": "assistant",
                    "message": {
                        "content": [
                            {"type": "tool_use", "id": "tu_1", "name": "Read", "input": {"file_path": "/repo/a.py"}}
                        ]
                    },
                }
            ),
            context,
        )
        end = parse_claude_line(
            line({"type": "user", "message": {"content": [{"type": "tool_result", "tool_use_id": "tu_1"}]}}),
            context,
        )

        assert start[0].kind == StreamEventKind.TOOL_CALL_START
        assert start[0].tool_name == "Read"
        assert start[0].correlation_id == "tu_1"
        assert start[0].text == "Read: a.py"
        assert end[0].kind == StreamEventKind.TOOL_CALL_END
        assert end[0].correlation_id == "tu_1"

    def test_result_is_turn_summary(self):
        events = parse_claude_line(
            line({"type": "result", "result": "{}", "num_turns": 3, "duration_ms": 1200}), StreamContext()
        )

        assert events[0].kind == StreamEventKind.TURN_SUMMARY
        assert "num_turns=3" in events[0].text

    def test_unknown_type_dropped(self):
        assert parse_claude_line(line({"type": "system", "subtype": "init"}), StreamContext()) == []

    def test_answer_comes_from_result_records(self):
        stdout = "\n".join(
            [
                line({"type": "assistant", "message": {"content": [{"type": "text", "text": "thinking"}]}}),
                line({"type": "result", "result": '{"level": 1}'}),
            ]
        )

        assert extract_claude_answer(stdout) == '{"level": 1}'
        assert extract_claude_answer("plain text") is None


class TestCodexParser:
    def test_command_execution_lifecycle(self):
        started = parse_codex_line(
            line({"type": "item.started", "item": {"id": "i1", "type": "command_execution", "command": "git status"}}),
            StreamContext(),
        )
        completed = parse_codex_line(
            line({"type": "item.completed", "item": {"id": "i1", "type": "command_execution", "exit_code": 0}}),
            StreamContext(),
        )

        assert started[0].kind == StreamEventKind.TOOL_CALL_START
        assert started[0].text == "shell: git status"
        assert completed[0].kind == StreamEventKind.TOOL_CALL_END
        assert completed[0].correlation_id == "i1"

    def test_agent_message_and_answer(self):
        record = line({"type": "item.completed", "item": {"type": "agent_message", "text": '{"level": 2}'}})

        events = parse_codex_line(record, StreamContext())

        assert events[0].kind == StreamEventKind.TEXT_DELTA
        assert extract_codex_answer(record + "\n" + line({"type": "turn.completed"})) == '{"level": 2}'

    def test_turn_completed(self):
        events = parse_codex_line(
            line({"type": "turn.completed", "usage": {"input_tokens": 10, "output_tokens": 5}}), StreamContext()
        )

        assert events[0].kind == StreamEventKind.TURN_SUMMARY
        assert "input_tokens=10" in events[0].text


class TestGeminiParser:
    def test_field_names_map_to_canonical_shape(self):
        events = parse_gemini_line(
            line({"type": "tool_use", "tool_name": "read_file", "tool_id": "t9", "parameters": {"path": "a.py"}}),
            StreamContext(),
        )

        assert events[0].tool_name == "read_file"
        assert events[0].correlation_id == "t9"
        assert events[0].text == "read_file: a.py"

    def test_user_messages_dropped(self):
        assert parse_gemini_line(line({"type": "message", "role": "user", "content": "hi"}), StreamContext()) == []

    def test_answer_joins_assistant_deltas(self):
        stdout = "\n".join(
            [
                line({"type": "message", "role": "assistant", "content": '{"level": ', "delta": True}),
                line({"type": "message", "role": "assistant", "content": "3}", "delta": True}),
                line({"type": "result", "status": "success"}),
            ]
        )

        assert extract_gemini_answer(stdout) == '{"level": 3}'


class TestPiParser:
    def test_tool_execution(self):
        start = parse_pi_line(
            line({"type": "tool_execution_start", "toolCallId": "c1", "toolName": "bash", "args": {"command": "ls"}}),
            StreamContext(),
        )
        end = parse_pi_line(
            line({"type": "tool_execution_end", "toolCallId": "c1", "toolName": "bash", "isError": True}),
            StreamContext(),
        )

        assert start[0].text == "bash: ls"
        assert end[0].kind == StreamEventKind.TOOL_CALL_END
        assert end[0].text == "bash failed"

    def test_text_delta(self):
        events = parse_pi_line(
            line({"type": "message_update", "assistantMessageEvent": {"type": "text_delta", "delta": "Reading"}}),
            StreamContext(),
        )

        assert events[0].text == "Reading"

    def test_answer_from_message_end(self):
        stdout = line(
            {
                "type": "message_end",
                "message": {"role": "assistant", "content": [{"type": "text", "text": '{"level": 1}'}]},
            }
        )

        assert extract_pi_answer(stdout) == '{"level": 1}'


class TestCursorAgentParser:
    def test_shell_tool_call_lifecycle(self):
        tool_call = {"shellToolCall": {"args": {"command": "git diff --stat"}}}
        start = parse_cursor_agent_line(
            line({"type": "tool_call", "subtype": "started", "call_id": "c1", "tool_call": tool_call}),
            StreamContext(),
        )
        end = parse_cursor_agent_line(
            line({"type": "tool_call", "subtype": "completed", "call_id": "c1", "tool_call": tool_call}),
            StreamContext(),
        )

        assert start[0].kind == StreamEventKind.TOOL_CALL_START
        assert start[0].text == "shell: git diff --stat"
        assert start[0].correlation_id == "c1"
        assert end[0].kind == StreamEventKind.TOOL_CALL_END
        assert end[0].correlation_id == "c1"

    def test_read_path_is_made_relative(self):
        events = parse_cursor_agent_line(
            line(
                {
                    "type": "tool_call",
                    "subtype": "started",
                    "call_id": "c2",
                    "tool_call": {"readToolCall": {"args": {"path": "/repo/src/a.py"}}},
                }
            ),
            StreamContext(cwd="/repo"),
        )

        assert events[0].text == "read: src/a.py"

    def test_assistant_text_and_result(self):
        text = parse_cursor_agent_line(
            line({"type": "assistant", "message": {"content": [{"type": "text", "text": "Looking at the diff"}]}}),
            StreamContext(),
        )
        result = parse_cursor_agent_line(line({"type": "result", "duration_ms": 1200}), StreamContext())

        assert text[0].kind == StreamEventKind.TEXT_DELTA
        assert text[0].text == "Looking at the diff"
        assert result[0].kind == StreamEventKind.TURN_SUMMARY
        assert "duration_ms=1200" in result[0].text

    def test_answer_skips_partial_deltas(self):
        stdout = "\n".join(
            [
                line({"type": "assistant", "timestamp_ms": 1, "message": {"content": [{"type": "text", "text": "{"}]}}),
                line({"type": "assistant", "message": {"content": [{"type": "text", "text": '{"level": 1}'}]}}),
                line({"type": "result", "result": "ignored"}),
            ]
        )

        assert extract_cursor_agent_answer(stdout) == '{"level": 1}'

    def test_answer_falls_back_to_result(self):
        assert extract_cursor_agent_answer(line({"type": "result", "result": '{"level": 2}'})) == '{"level": 2}'


class TestOpenCodeParser:
    def test_text_part(self):
        events = parse_opencode_line(line({"type": "text", "part": {"text": "Reviewing"}}), StreamContext())

        assert events[0].kind == StreamEventKind.TEXT_DELTA
        assert events[0].text == "Reviewing"

    def test_tool_use_with_state_input(self):
        events = parse_opencode_line(
            line(
                {
                    "type": "tool_use",
                    "part": {"tool": "bash", "callID": "t1", "state": {"input": {"command": "git log -3"}}},
                }
            ),
            StreamContext(),
        )

        assert events[0].kind == StreamEventKind.TOOL_CALL_START
        assert events[0].text == "bash: git log -3"
        assert events[0].correlation_id == "t1"

    def test_step_start_dropped(self):
        assert parse_opencode_line(line({"type": "step_start", "part": {}}), StreamContext()) == []

    def test_step_finish_is_turn_summary(self):
        events = parse_opencode_line(
            line({"type": "step_finish", "part": {"reason": "stop", "tokens": {"input": 10, "output": 5}}}),
            StreamContext(),
        )

        assert events[0].kind == StreamEventKind.TURN_SUMMARY
        assert events[0].text.startswith("Step stop")
        assert "output_tokens=5" in events[0].text

    def test_answer_accumulates_text_parts(self):
        stdout = "\n".join(
            [
                line({"type": "text", "part": {"text": '{"level": '}}),
                line({"type": "tool_use", "part": {"tool": "read"}}),
                line({"type": "text", "part": {"text": "1}"}}),
            ]
        )

        assert extract_opencode_answer(stdout) == '{"level": 1}'

    def test_no_text_means_no_answer(self):
        assert extract_opencode_answer(line({"type": "step_finish", "part": {}})) is None


class TestStreamNormalizer:
    def test_partial_lines_are_buffered(self):
        events = []
        normalizer = StreamNormalizer(parse_plain_text_line, events.append)

        normalizer.feed("first li")
        assert events == []
        normalizer.feed("ne\nsecond")
        assert [e.text for e in events] == ["first line"]
        normalizer.flush()

        assert [e.text for e in events] == ["first line", "second"]

    def test_multibyte_character_split_across_chunks(self):
        events = []
        normalizer = StreamNormalizer(parse_plain_text_line, events.append)
        data = "héllo\n".encode("utf-8")

        normalizer.feed(data[:2])
        normalizer.feed(data[2:])

        assert [e.text for e in events] == ["héllo"]

    def test_malformed_line_skipped(self):
        events = []
        normalizer = StreamNormalizer(parse_claude_line, events.append)
        good = line({"type": "stream_event", "event": {"delta": {"type": "text_delta", "text": "ok"}}})

        normalizer.feed("not json at all\n[1, 2]\n" + good + "\n")

        assert [e.text for e in events] == ["ok"]

    def test_callback_failure_does_not_stop_stream(self):
        seen = []

        def on_event(event):
            seen.append(event.text)
            if len(seen) == 1:
                raise RuntimeError("boom")

        normalizer = StreamNormalizer(parse_plain_text_line, on_event)
        normalizer.feed("a\nb\n")

        assert seen == ["a", "b"]

    def test_crlf_and_blank_lines(self):
        events = []
        normalizer = StreamNormalizer(parse_plain_text_line, events.append)

        normalizer.feed("a\r\n\r\n\nb\n")

        assert [e.text for e in events] == ["a", "b"]

    @pytest.mark.parametrize("trace", [True, False])
    def test_trace_logs_to_stream_logger(self, caplog, trace):
        caplog.set_level("DEBUG", logger="pair_review.stream")
        normalizer = StreamNormalizer(
            parse_claude_line, lambda e: None, StreamContext(trace=trace, label="[Level 1]")
        )

        normalizer.feed(line({"type": "system"}) + "\n")

        traced = [r for r in caplog.records if r.name == "pair_review.stream"]
        assert bool(traced) is trace
