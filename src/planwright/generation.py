"""Generation host: turns ``generatePlan`` requests into streamed responses.

The host side of the bridge. It runs the selected agent CLI (claude_code,
codex or cursor) in streaming mode, extracts text from its NDJSON stdout and
reports progress as ``planResponse`` events carrying the accumulated text.
Every run ends with exactly one final (``partial: false``) event, also when
the command is missing, fails, times out or is cancelled.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from planwright.bridge import decode_generate_plan, plan_response_payload
from planwright.config import ApiConfiguration, validate_api

logger = logging.getLogger(__name__)

BACKEND_DEFAULTS: dict[str, dict[str, str]] = {
    "claude_code": {
        "cli": "claude --print --output-format stream-json --verbose --include-partial-messages",
        "install_hint": "Install Claude Code: https://docs.anthropic.com/en/docs/claude-code",
    },
    "codex": {
        "cli": "codex exec --json",
        "install_hint": "Install Codex CLI: npm install -g @openai/codex",
    },
    "cursor": {
        "cli": "agent --print --output-format stream-json --stream-partial-output",
        "install_hint": "Install Cursor Agent: https://docs.cursor.com/agent",
    },
}

INITIAL_PREAMBLE = (
    "You are a software architect helping the user plan a change to this project. "
    "Read whatever files you need, but do NOT create, edit, or delete files and do NOT run commands "
    "that modify state. Reply with a concrete, numbered implementation plan.\n\n"
)

ITERATION_PREAMBLE = (
    "You are a software architect iterating on an implementation plan with the user. "
    "The conversation so far is below; the last USER line is the newest feedback. "
    "Do NOT create, edit, or delete files. Reply with the full revised plan.\n\n"
)

Emit = Callable[[dict[str, Any]], None]


# ---------------------------------------------------------------------------
# Command building
# ---------------------------------------------------------------------------


def build_command(api: ApiConfiguration, prompt: str) -> list[str]:
    """Build the read-only, streaming CLI invocation for *api*.

    Raises:
        ValueError: If the backend is unknown.
    """
    defaults = BACKEND_DEFAULTS.get(api.backend)
    if defaults is None:
        raise ValueError(f"Unknown backend '{api.backend}'. Known backends: {', '.join(sorted(BACKEND_DEFAULTS))}")
    cmd = shlex.split(defaults["cli"])
    if api.backend == "claude_code":
        cmd.extend(["--allowedTools", "Read", "Glob", "Grep"])
    elif api.backend == "codex":
        cmd.extend(["-c", 'sandbox_permissions=["disk-full-read-access"]'])
    else:
        cmd.extend(["--mode", "ask"])
    if api.model:
        cmd.extend(["--model", api.model])
    cmd.extend(api.extra_flags)
    if api.backend == "claude_code":
        cmd.extend(["-p", prompt])
    else:
        cmd.append(prompt)
    return cmd


def clean_agent_env() -> dict[str, str]:
    """Environment for agent subprocesses, without the nested-session marker."""
    return {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}


# ---------------------------------------------------------------------------
# Stream text extraction
# ---------------------------------------------------------------------------


def load_event(line: str) -> dict[str, Any] | None:
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        return None
    return event if isinstance(event, dict) else None


def delta_text(event: dict[str, Any]) -> str | None:
    """Text of a ``content_block_delta`` event, unwrapping ``stream_event``."""
    if event.get("type") == "stream_event":
        event = event.get("event", {})
    if event.get("type") == "content_block_delta":
        delta = event.get("delta", {})
        if delta.get("type") == "text_delta":
            return delta.get("text")
    return None


def extract_claude_stream_text(line: str) -> str | None:
    event = load_event(line)
    if event is None:
        return None
    return delta_text(event)


def extract_codex_stream_text(line: str) -> str | None:
    """Agent message text from ``item.completed`` events."""
    event = load_event(line)
    if event is None or event.get("type") != "item.completed":
        return None
    item = event.get("item", {})
    if item.get("type") == "agent_message":
        return item.get("text")
    return None


def extract_cursor_stream_text(line: str) -> str | None:
    """Deltas and chunked ``assistant`` snapshots from cursor agent output."""
    event = load_event(line)
    if event is None:
        return None
    text = delta_text(event)
    if text is not None:
        return text
    if event.get("type") == "assistant":
        message = event.get("message", {})
        if isinstance(message, dict):
            parts = [b.get("text", "") for b in message.get("content", []) if b.get("type") == "text"]
            if parts:
                return "".join(parts)
        text = event.get("text")
        if isinstance(text, str) and text:
            return text
    return None


STREAM_TEXT_EXTRACTORS: dict[str, Callable[[str], str | None]] = {
    "claude_code": extract_claude_stream_text,
    "codex": extract_codex_stream_text,
    "cursor": extract_cursor_stream_text,
}


def accumulate(previous: str, piece: str, backend: str) -> str:
    """Fold one extracted piece into the text accumulated so far.

    Claude emits token deltas, codex emits whole agent messages, and cursor
    emits cumulative snapshots mixed with fragments.
    """
    if not previous:
        return piece
    if backend == "codex":
        return f"{previous}\n\n{piece}"
    if backend == "cursor":
        if piece.startswith(previous):
            return piece
        if previous.endswith(piece):
            return previous
    return previous + piece


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class PlanGenerator:
    """Runs one agent CLI query at a time and streams its text."""

    def __init__(self, api: ApiConfiguration, timeout: int = 600, cwd: Path | None = None) -> None:
        self.api = api
        self.timeout = timeout
        self.cwd = cwd
        self.process: subprocess.Popen | None = None
        self.cancelled = False
        self.lock = threading.Lock()

    def build_prompt(self, task: str, is_initial_plan: bool) -> str:
        preamble = INITIAL_PREAMBLE if is_initial_plan else ITERATION_PREAMBLE
        return preamble + task

    def generate(self, task: str, is_initial_plan: bool, emit: Emit) -> str:
        """Run the query, emitting partial events, then one final event.

        Returns the final text that was emitted.
        """
        text = ""
        stderr_lines: list[str] = []
        self.cancelled = False
        timed_out = threading.Event()

        def read_stderr(pipe: Any) -> None:
            for line in pipe:
                stderr_lines.append(line)

        try:
            command = build_command(self.api, self.build_prompt(task, is_initial_plan))
            extractor = STREAM_TEXT_EXTRACTORS[self.api.backend]
            with self.lock:
                self.process = subprocess.Popen(
                    command,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    stdin=subprocess.DEVNULL,
                    text=True,
                    cwd=self.cwd,
                    env=clean_agent_env(),
                )
            process = self.process
            err_thread = threading.Thread(target=read_stderr, args=(process.stderr,), daemon=True)
            err_thread.start()

            def on_timeout() -> None:
                timed_out.set()
                process.kill()

            timer = threading.Timer(self.timeout, on_timeout)
            timer.daemon = True
            timer.start()
            try:
                for line in process.stdout:
                    line = line.strip()
                    if not line:
                        continue
                    piece = extractor(line)
                    if not piece:
                        continue
                    text = accumulate(text, piece, self.api.backend)
                    emit(plan_response_payload(text, partial=True))
                process.wait()
            finally:
                timer.cancel()
            err_thread.join(timeout=5)
        except FileNotFoundError:
            cmd_name = BACKEND_DEFAULTS[self.api.backend]["cli"].split()[0]
            hint = BACKEND_DEFAULTS[self.api.backend]["install_hint"]
            return self.finish(emit, f"*Error: Command not found: {cmd_name}. {hint}*")
        except ValueError as exc:
            return self.finish(emit, f"*Error: Invalid model configuration: {exc}*")
        finally:
            with self.lock:
                returncode = self.process.returncode if self.process is not None else None
                self.process = None

        if self.cancelled:
            return self.finish(emit, f"{text}\n\n*[Cancelled]*" if text else "*Cancelled*")
        if timed_out.is_set():
            suffix = f"*Error: Timeout after {self.timeout}s*"
            return self.finish(emit, f"{text}\n\n{suffix}" if text else suffix)
        if returncode != 0 and not text:
            detail = "".join(stderr_lines).strip() or f"Exit code {returncode}"
            return self.finish(emit, f"*Error: {detail}*")
        if not text:
            return self.finish(emit, "*Empty response: no text returned.*")
        return self.finish(emit, text)

    def finish(self, emit: Emit, text: str) -> str:
        emit(plan_response_payload(text, partial=False))
        return text

    def cancel(self) -> bool:
        """Terminate the running query. Returns False when nothing is running."""
        with self.lock:
            if self.process is None:
                return False
            self.cancelled = True
            self.process.terminate()
            return True


def run_in_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, daemon=True).start()


class GenerationHost:
    """Receives outbound bridge payloads and answers through *dispatch*.

    *dispatch* is called from the worker thread; the UI wraps it so events
    reach the channel on its own thread.
    """

    def __init__(
        self,
        generator: PlanGenerator,
        dispatch: Emit,
        runner: Callable[[Callable[[], None]], None] = run_in_thread,
    ) -> None:
        self.generator = generator
        self.dispatch = dispatch
        self.runner = runner

    def __call__(self, payload: dict[str, Any]) -> None:
        kind = payload.get("type")
        if kind == "generatePlan":
            request = decode_generate_plan(payload)
            if request is None:
                return
            logger.info("Starting %s generation", self.generator.api.label())
            self.runner(lambda: self.generator.generate(request.task, request.is_initial_plan, self.dispatch))
        elif kind == "apiConfiguration":
            try:
                self.generator.api = validate_api(payload.get("apiConfiguration") or {})
            except ValueError:
                logger.warning("Ignoring invalid apiConfiguration: %r", payload.get("apiConfiguration"))
        elif kind == "cancelGeneration":
            if self.generator.cancel():
                logger.info("Generation cancelled")
        else:
            logger.debug("Host ignoring outbound message of type %r", kind)
