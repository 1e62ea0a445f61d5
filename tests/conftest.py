"""Shared pytest fixtures for pair-review engine tests."""

import shlex
import sys
import textwrap
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

import pytest

from pair_review.analysis.contracts import ProviderModel
from pair_review.analysis.providers.base import ProviderSpec
from pair_review.analysis.providers.registry import ProviderRegistry
from pair_review.analysis.streaming import parse_plain_text_line


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def set(self, seconds: float) -> None:
        self.now = seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingBroadcaster:
    """Broadcaster stand-in that keeps every published message."""

    def __init__(self) -> None:
        self.published: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, run_id: str, message: Dict[str, Any]) -> int:
        self.published.append((run_id, message))
        return 1

    def close(self, run_id: str) -> None:
        pass

    def clear(self) -> None:
        self.published.clear()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def fake_cli(tmp_path: Path) -> Callable[[str], str]:
    """Write a Python script posing as a reviewer CLI and return its command line.

    The script body runs with ``json``, ``os``, ``signal``, ``sys`` and
    ``time`` imported. ``EXTRACT`` is true when invoked with the fake
    provider's extraction arguments.
    """
    counter = {"n": 0}

    def make(body: str) -> str:
        counter["n"] += 1
        script = tmp_path / f"fake_cli_{counter['n']}.py"
        script.write_text(
            "import json, os, signal, sys, time\n"
            "EXTRACT = '--extract' in sys.argv\n"
            "if '--version' in sys.argv:\n"
            "    print('fake 1.0.0')\n"
            "    sys.exit(0)\n" + textwrap.dedent(body)
        )
        return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"

    return make


def make_fake_spec(command: str, **overrides: Any) -> ProviderSpec:
    """Provider spec around a fake CLI command."""
    fields: Dict[str, Any] = dict(
        id="fake",
        name="Fake",
        default_command=command,
        build_args=lambda model, sandbox: ["--model", model],
        models=(
            ProviderModel(id="fake-mini", tier="fast"),
            ProviderModel(id="fake-main", tier="balanced", default=True),
        ),
        install_instructions="Install Fake CLI: pip install fake-cli",
        build_extraction_args=lambda model: ["--extract", "--model", model],
        parse_stream_line=parse_plain_text_line,
    )
    fields.update(overrides)
    return ProviderSpec(**fields)


@pytest.fixture
def register_fake_provider():
    """Register a fake provider for the duration of a test."""
    registered: List[str] = []

    def register(spec: ProviderSpec) -> ProviderSpec:
        ProviderRegistry.unregister(spec.id)
        ProviderRegistry.register(spec)
        registered.append(spec.id)
        return spec

    yield register

    for provider_id in registered:
        ProviderRegistry.unregister(provider_id)


@pytest.fixture
def fake_spec() -> Callable[..., ProviderSpec]:
    return make_fake_spec
