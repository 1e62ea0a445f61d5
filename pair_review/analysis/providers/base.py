"""Provider capability records and the generic provider adapter.

A provider is described by a frozen ``ProviderSpec``: how to build its
command line, how to parse its stream, where its final answer lives. The
``ProviderAdapter`` runs any spec through the same process lifecycle:
spawn, register, stream, time out, classify the exit and extract the result.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from pair_review.analysis.constants import (
    CANCELLATION_EXIT_CODES,
    SNIPPET_LENGTH,
    level_label,
)
from pair_review.analysis.contracts import (
    ExtractionResult,
    ProviderModel,
    ProviderOverrides,
    StreamEvent,
)
from pair_review.analysis.errors import (
    CancellationError,
    ProviderError,
    ProviderExitError,
    ProviderTimeoutError,
    SpawnNotFoundError,
)
from pair_review.analysis.extraction import extract_json
from pair_review.analysis.logging_utils import stream_trace_enabled
from pair_review.analysis.process_registry import ProcessRegistry
from pair_review.analysis.streaming import (
    LineParser,
    StreamContext,
    StreamNormalizer,
    parse_plain_text_line,
)
from pair_review.analysis.utils.config import AnalysisSettings
from pair_review.analysis.utils.sandbox import SandboxPolicy, read_only_policy

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
TERMINATE_GRACE_SECONDS = 5.0
SHELL_NOT_FOUND_EXIT_CODE = 127

EXTRACTION_PROMPT = """Extract the JSON object from the following text. Return ONLY the valid JSON, nothing else. Do not include any explanation, markdown formatting, or code blocks - just the raw JSON.

=== BEGIN INPUT TEXT ===
{text}
=== END INPUT TEXT ==="""


@dataclass(frozen=True)
class ProviderSpec:
    """Capabilities of one external reviewer program."""

    id: str
    name: str
    default_command: str
    build_args: Callable[[str, SandboxPolicy], List[str]]
    models: Tuple[ProviderModel, ...] = ()
    install_instructions: str = ""
    build_extraction_args: Optional[Callable[[str], List[str]]] = None
    parse_stream_line: LineParser = parse_plain_text_line
    extract_answer: Optional[Callable[[str], Optional[str]]] = None
    prompt_flag: Optional[str] = None
    extraction_prompt_flag: Optional[str] = None
    version_args: Tuple[str, ...] = ("--version",)

    @property
    def command_env_var(self) -> str:
        return f"PAIR_REVIEW_{self.id.upper().replace('-', '_')}_CMD"


@dataclass
class ExecuteOptions:
    """Per-call options for ``ProviderAdapter.execute``."""

    cwd: Optional[str] = None
    timeout_seconds: Optional[float] = None
    level: Union[int, str] = "unknown"
    run_id: Optional[str] = None
    on_stream_event: Optional[Callable[[StreamEvent], None]] = None
    process_registry: Optional[ProcessRegistry] = None


@dataclass
class Invocation:
    """A ready-to-spawn command line."""

    argv: List[str] = field(default_factory=list)
    shell_command: Optional[str] = None
    stdin: Optional[bytes] = None

    @property
    def display(self) -> str:
        return self.shell_command or " ".join(self.argv[:1])


class ProviderAdapter:
    """Runs prompts against one provider with one model."""

    def __init__(
        self,
        spec: ProviderSpec,
        model: str,
        models: Sequence[ProviderModel] = (),
        overrides: Optional[ProviderOverrides] = None,
        settings: Optional[AnalysisSettings] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> None:
        self.spec = spec
        self.model = model
        self.models = list(models) or list(spec.models)
        self.overrides = overrides or ProviderOverrides()
        self.settings = settings or AnalysisSettings()
        self._environ = dict(os.environ if environ is None else environ)

    @property
    def sandbox(self) -> SandboxPolicy:
        return read_only_policy(unrestricted=self.settings.unrestricted)

    @property
    def use_shell(self) -> bool:
        return self.overrides.shell

    def resolve_command(self) -> str:
        """Command precedence: environment variable, config override, default."""
        return (
            self._environ.get(self.spec.command_env_var)
            or self.overrides.command
            or self.spec.default_command
        )

    def _model_config(self, model: str) -> Optional[ProviderModel]:
        return next((m for m in self.models if m.id == model), None)

    def fast_tier_model(self) -> str:
        """Cheapest model for auxiliary calls, falling back to the analysis model."""
        fast = next((m for m in self.models if m.tier == "fast"), None)
        return fast.id if fast else self.model

    def build_env(self, model: Optional[str] = None) -> Dict[str, str]:
        env = dict(self._environ)
        env.update(self.overrides.env)
        model_config = self._model_config(model or self.model)
        if model_config:
            env.update(model_config.env)
        return env

    def build_args(self, model: Optional[str] = None) -> List[str]:
        """Full argument list: provider args, then config extra args, then model extra args."""
        model = model or self.model
        args = list(self.spec.build_args(model, self.sandbox))
        args.extend(self.overrides.extra_args)
        model_config = self._model_config(model)
        if model_config:
            args.extend(model_config.extra_args)
        return args

    def build_invocation(
        self, args: Sequence[str], prompt: Optional[str], prompt_flag: Optional[str] = None
    ) -> Invocation:
        """Assemble the command line and decide how the prompt is delivered.

        The prompt goes through stdin unless ``prompt_flag`` is given, in
        which case it becomes that flag's value. Shell mode quotes every
        argument, the prompt included.
        """
        args = list(args)
        stdin = None
        if prompt is not None:
            if prompt_flag:
                args.extend([prompt_flag, prompt])
            else:
                stdin = prompt.encode("utf-8")

        command = self.resolve_command()
        if self.use_shell:
            quoted = " ".join(shlex.quote(arg) for arg in args)
            return Invocation(shell_command=f"{command} {quoted}".strip(), stdin=stdin)
        return Invocation(argv=shlex.split(command) + args, stdin=stdin)

    def _is_cancelled(self, options: ExecuteOptions) -> bool:
        return bool(options.process_registry and options.process_registry.is_cancelled(options.run_id))

    async def _spawn(self, invocation: Invocation, cwd: Optional[str], env: Dict[str, str], prefix: str):
        stdin = asyncio.subprocess.PIPE if invocation.stdin is not None else asyncio.subprocess.DEVNULL
        try:
            if invocation.shell_command is not None:
                return await asyncio.create_subprocess_shell(
                    invocation.shell_command,
                    stdin=stdin,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=env,
                )
            return await asyncio.create_subprocess_exec(
                *invocation.argv,
                stdin=stdin,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError as e:
            raise self._not_found(prefix, str(e)) from e
        except OSError as e:
            # PermissionError, or E2BIG when a flag-delivered prompt exceeds the argv limit
            raise ProviderError(
                f"{prefix} {self.spec.name} CLI could not be started: {e}",
                provider_id=self.spec.id,
                level=prefix,
            ) from e

    def _not_found(self, prefix: str, detail: str) -> SpawnNotFoundError:
        message = f"{prefix} {self.spec.name} CLI not found ({self.resolve_command()})"
        if self.install_instructions:
            message = f"{message}. {self.install_instructions}"
        logger.error(f"{message}: {detail}")
        return SpawnNotFoundError(
            message,
            install_instructions=self.install_instructions,
            provider_id=self.spec.id,
            level=prefix,
        )

    @property
    def install_instructions(self) -> str:
        return self.overrides.install_instructions or self.spec.install_instructions

    async def _terminate(self, process) -> None:
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    async def _communicate(self, process, stdin: Optional[bytes], normalizer: Optional[StreamNormalizer]):
        stdout_chunks: List[bytes] = []

        async def write_stdin() -> None:
            if stdin is None or process.stdin is None:
                return
            try:
                process.stdin.write(stdin)
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                logger.debug(f"Process closed stdin early: {e}")
            finally:
                process.stdin.close()

        async def read_stdout() -> None:
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                stdout_chunks.append(chunk)
                if normalizer is not None:
                    normalizer.feed(chunk)
            if normalizer is not None:
                normalizer.flush()

        _, _, stderr = await asyncio.gather(write_stdin(), read_stdout(), process.stderr.read())
        returncode = await process.wait()
        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
        return returncode, stdout, stderr.decode("utf-8", errors="replace")

    async def run_process(
        self,
        args: Sequence[str],
        prompt: Optional[str],
        options: ExecuteOptions,
        timeout_seconds: float,
        model: Optional[str] = None,
        stream: bool = False,
        prompt_flag: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Spawn the provider, wait for it and classify its exit.

        Returns:
            Tuple of (stdout, stderr) for a zero exit

        Raises:
            ProviderError: The working directory is missing or the process could not start
            SpawnNotFoundError: The binary is missing
            ProviderTimeoutError: The process outlived ``timeout_seconds``
            CancellationError: The run was cancelled and the process was signalled
            ProviderExitError: Any other non-zero exit
        """
        prefix = level_label(options.level)
        invocation = self.build_invocation(args, prompt, prompt_flag)
        cwd = options.cwd or os.getcwd()
        if not os.path.isdir(cwd):
            raise ProviderError(
                f"{prefix} Working directory does not exist: {cwd}", provider_id=self.spec.id, level=prefix
            )

        if prompt is not None:
            logger.info(f"{prefix} Writing prompt: {len(prompt)} bytes")
        process = await self._spawn(invocation, cwd, self.build_env(model), prefix)
        logger.info(f"{prefix} Spawned {self.spec.name} CLI process: PID {process.pid}")

        if options.run_id and options.process_registry is not None:
            options.process_registry.register(options.run_id, process)

        normalizer = None
        if stream and options.on_stream_event is not None:
            normalizer = StreamNormalizer(
                self.spec.parse_stream_line,
                options.on_stream_event,
                StreamContext(cwd=cwd, trace=stream_trace_enabled(), label=prefix),
            )

        try:
            returncode, stdout, stderr = await asyncio.wait_for(
                self._communicate(process, invocation.stdin, normalizer), timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.error(f"{prefix} Process {process.pid} timed out after {timeout_seconds:g}s")
            await self._terminate(process)
            raise ProviderTimeoutError(
                f"{prefix} {self.spec.name} CLI timed out after {timeout_seconds:g}s",
                timeout_seconds=timeout_seconds,
                provider_id=self.spec.id,
                level=prefix,
            )
        except asyncio.CancelledError:
            await self._terminate(process)
            raise

        if stderr.strip():
            logger.debug(f"{prefix} {self.spec.name} stderr: {stderr[:SNIPPET_LENGTH]}")

        if returncode == 0:
            return stdout, stderr

        if returncode in CANCELLATION_EXIT_CODES and self._is_cancelled(options):
            logger.info(f"{prefix} {self.spec.name} CLI stopped, analysis was cancelled")
            raise CancellationError(
                f"{prefix} Analysis cancelled", provider_id=self.spec.id, level=prefix
            )
        if self.use_shell and returncode == SHELL_NOT_FOUND_EXIT_CODE:
            raise self._not_found(prefix, stderr.strip())

        logger.error(f"{prefix} {self.spec.name} CLI exited with code {returncode}")
        raise ProviderExitError(
            f"{prefix} {self.spec.name} CLI exited with code {returncode}: {stderr.strip()[:SNIPPET_LENGTH]}",
            exit_code=returncode,
            stderr=stderr,
            provider_id=self.spec.id,
            level=prefix,
        )

    def answer_text(self, stdout: str) -> str:
        """Text that holds the reviewer's answer, unwrapped from stream records."""
        if self.spec.extract_answer is None:
            return stdout
        answer = self.spec.extract_answer(stdout)
        return answer if answer is not None else stdout

    async def execute(self, prompt: str, options: Optional[ExecuteOptions] = None) -> Any:
        """Run one prompt and return the reviewer's structured answer.

        Args:
            prompt: Prompt text
            options: Working directory, timeout, level label, run id, stream
                callback and process registry

        Returns:
            Parsed JSON data, or ``{"raw": text, "parsed": False}`` when no
            JSON could be recovered even with the LLM fallback

        Raises:
            ProviderError: One of its subclasses, see ``run_process``
        """
        options = options or ExecuteOptions()
        prefix = level_label(options.level)
        timeout = options.timeout_seconds or self.settings.timeout_seconds

        logger.info(f"{prefix} Executing {self.spec.name} CLI with model {self.model}...")
        stdout, _ = await self.run_process(
            self.build_args(),
            prompt,
            options,
            timeout,
            model=self.model,
            stream=True,
            prompt_flag=self.spec.prompt_flag,
        )

        text = self.answer_text(stdout)
        result = extract_json(text, level=str(options.level))
        if result.success:
            logger.info(f"{prefix} Successfully parsed JSON response")
            return result.data

        logger.warning(f"{prefix} Regex extraction failed, attempting LLM-based extraction...")
        llm_result = await self.extract_json_with_llm(text, options)
        if llm_result.success:
            logger.info(f"{prefix} LLM extraction succeeded")
            return llm_result.data

        if self._is_cancelled(options):
            raise CancellationError(f"{prefix} Analysis cancelled", provider_id=self.spec.id, level=prefix)

        logger.warning(f"{prefix} LLM extraction failed: {llm_result.error}")
        logger.info(f"{prefix} Returning raw response ({len(text)} chars)")
        return {"raw": text, "parsed": False}

    async def extract_json_with_llm(self, text: str, options: Optional[ExecuteOptions] = None) -> ExtractionResult:
        """Ask the provider's fast-tier model to restate ``text`` as bare JSON.

        Never raises for provider failures; they come back as an unsuccessful
        ExtractionResult.
        """
        options = options or ExecuteOptions()
        prefix = level_label(options.level)

        if self.spec.build_extraction_args is None:
            return ExtractionResult(
                success=False, error=f"{self.spec.id} does not support LLM extraction"
            )

        model = self.fast_tier_model()
        args = list(self.spec.build_extraction_args(model)) + list(self.overrides.extra_args)
        logger.info(f"{prefix} Attempting LLM-based JSON extraction with {model}...")

        fallback_options = ExecuteOptions(
            cwd=options.cwd,
            level=options.level,
            run_id=options.run_id,
            process_registry=options.process_registry,
        )
        try:
            stdout, _ = await self.run_process(
                args,
                EXTRACTION_PROMPT.format(text=text),
                fallback_options,
                self.settings.extraction_timeout_seconds,
                model=model,
                prompt_flag=self.spec.extraction_prompt_flag,
            )
        except ProviderError as e:
            return ExtractionResult(success=False, error=str(e))

        return extract_json(self.answer_text(stdout), level=str(options.level))

    async def check_available(self, timeout_seconds: Optional[float] = None) -> bool:
        """Probe the CLI with its version flag. Never raises."""
        timeout = timeout_seconds or self.settings.availability_timeout_seconds
        options = ExecuteOptions(level="availability")
        try:
            await self.run_process(self.spec.version_args, None, options, timeout)
        except ProviderError as e:
            logger.debug(f"{self.spec.name} CLI not available: {e}")
            return False
        except OSError as e:
            logger.debug(f"{self.spec.name} CLI not available: {e}")
            return False
        logger.info(f"{self.spec.name} CLI available")
        return True
