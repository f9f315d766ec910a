"""An action that runs a command in the background and optionally rolls it back.

If the action's description has a ``duration`` parameter, the action keeps
running after the command completed; otherwise it completes with the command.
"""

from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
import threading
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_DRAIN_TIMEOUT = 5.0
_WORD = re.compile(r"[^\W_]+(?:'[^\W_]+)*")


class ActionError(Exception):
    """An action failure, reported with a title and the underlying cause."""

    def __init__(self, title: str, cause: BaseException | None = None, status: str = "errored") -> None:
        super().__init__(title if cause is None else f"{title}: {cause}")
        self.title = title
        self.detail = None if cause is None else str(cause)
        self.status = status


@dataclass
class KubectlOpts:
    command: list[str]
    rollback_precondition_command: list[str] | None = None
    rollback_command: list[str] | None = None
    log_target_type: str = ""
    log_target_name: str = ""
    log_action_name: str = ""


@dataclass
class KubectlActionState:
    opts: KubectlOpts = field(default_factory=lambda: KubectlOpts(command=[]))
    cmd_state_id: str = ""
    pid: int = 0
    command_completed: bool = False


@dataclass(frozen=True)
class Message:
    level: str
    message: str


@dataclass
class StatusResult:
    completed: bool = False
    messages: list[Message] | None = None
    error: ActionError | None = None


@dataclass
class StopResult:
    messages: list[Message] = field(default_factory=list)


class _CommandState:
    """A started process whose combined output is collected line by line."""

    def __init__(self, process: subprocess.Popen[str], on_exit: Callable[[int], None]) -> None:
        self.id = str(uuid.uuid4())
        self.process = process
        self._on_exit = on_exit
        self._lines: list[str] = []
        self._consumed = 0
        self._lock = threading.Lock()
        self._reader = threading.Thread(target=self._read, daemon=True)
        self._reader.start()

    def _read(self) -> None:
        stream = self.process.stdout
        if stream is not None:
            for line in stream:
                with self._lock:
                    self._lines.append(line.rstrip("\r\n"))
            stream.close()
        self._on_exit(self.process.wait())

    @property
    def exit_code(self) -> int:
        """The exit code, or -1 while running or after a signal."""
        if self._reader.is_alive():
            return -1
        code = self.process.returncode
        return -1 if code is None or code < 0 else code

    def get_lines(self, final: bool) -> list[str]:
        """Output lines not returned before; with final, wait for the rest."""
        if final:
            self._reader.join(timeout=_DRAIN_TIMEOUT)
        with self._lock:
            new = self._lines[self._consumed:]
            self._consumed = len(self._lines)
        return new


_commands: dict[str, _CommandState] = {}
_commands_lock = threading.Lock()


def _register(state: _CommandState) -> None:
    with _commands_lock:
        _commands[state.id] = state


def _lookup(state_id: str) -> _CommandState | None:
    with _commands_lock:
        return _commands.get(state_id)


def _remove(state_id: str) -> _CommandState | None:
    with _commands_lock:
        return _commands.pop(state_id, None)


def _title(text: str) -> str:
    return _WORD.sub(lambda m: m.group(0)[:1].upper() + m.group(0)[1:].lower(), text)


def _log_stdout(lines: list[str], opts: KubectlOpts) -> None:
    for line in lines:
        trimmed = line.replace("\n", "").strip()
        if trimmed:
            logger.info("[%s=%s] ---- %s", opts.log_target_type, opts.log_target_name, trimmed)


def extract_error_from_stdout(lines: list[str]) -> str | None:
    """The text after ``error: `` in the last line that holds it, or None."""
    for line in reversed(lines):
        if "error: " in line:
            return line.partition("error: ")[2]
    return None


def has_duration(description: Any) -> bool:
    """Whether an action description declares a ``duration`` parameter."""
    if isinstance(description, Mapping):
        parameters = description.get("parameters") or []
    else:
        parameters = getattr(description, "parameters", None) or []
    for parameter in parameters:
        name = parameter.get("name") if isinstance(parameter, Mapping) else getattr(parameter, "name", None)
        if name == "duration":
            return True
    return False


def _run_combined(command: list[str]) -> tuple[bool, str]:
    try:
        completed = subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError as exc:
        return False, str(exc)
    return completed.returncode == 0, completed.stdout or ""


def _kill(pid: int, command: _CommandState | None) -> None:
    try:
        if command is not None:
            command.process.kill()
        else:
            os.kill(pid, getattr(signal, "SIGKILL", signal.SIGTERM))
    except OSError:
        pass


@dataclass
class KubectlAction:
    """Runs the command the options provider builds, and stops or rolls it back."""

    description: Any
    opts_provider: Callable[[Any], KubectlOpts]

    def new_empty_state(self) -> KubectlActionState:
        return KubectlActionState()

    def describe(self) -> Any:
        return self.description

    def prepare(self, state: KubectlActionState, request: Any) -> None:
        try:
            opts = self.opts_provider(request)
        except ActionError:
            raise
        except Exception as exc:
            raise ActionError("Failed to prepare settings.", exc) from exc
        state.opts = opts

    def start(self, state: KubectlActionState) -> None:
        opts = state.opts
        logger.info(
            "[%s=%s] %s with command '%s'",
            opts.log_target_type, opts.log_target_name,
            _title(opts.log_action_name), " ".join(opts.command),
        )
        if not opts.command:
            raise ActionError(f"Failed to {opts.log_action_name}.", ValueError("empty command"))
        try:
            process = subprocess.Popen(
                opts.command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            raise ActionError(f"Failed to {opts.log_action_name}.", exc) from exc

        def on_exit(code: int) -> None:
            if code != 0:
                logger.error(
                    "[%s=%s] Failed to %s: exit status %d",
                    opts.log_target_type, opts.log_target_name, opts.log_action_name, code,
                )

        command = _CommandState(process, on_exit)
        _register(command)
        state.cmd_state_id = command.id
        state.pid = process.pid

    def status(self, state: KubectlActionState) -> StatusResult:
        result = StatusResult()
        if state.command_completed:
            return result
        opts = state.opts
        logger.debug("[%s=%s] Checking command pid %d...", opts.log_target_type, opts.log_target_name, state.pid)

        command = _lookup(state.cmd_state_id)
        if command is None:
            raise ActionError(
                "Failed to find command state", KeyError(f"no command state {state.cmd_state_id!r}")
            )

        messages: list[Message] = []
        exit_code = command.exit_code
        lines = command.get_lines(False)
        _log_stdout(lines, opts)
        title = _title(opts.log_action_name)
        if exit_code == -1:
            logger.debug("[%s=%s] %s still running", opts.log_target_type, opts.log_target_name, title)
            messages.append(Message("debug", f"{title} '{opts.log_target_name}' still running"))
        elif exit_code == 0:
            logger.info("[%s=%s] %s completed successfully", opts.log_target_type, opts.log_target_name, opts.log_action_name)
            messages.append(Message("info", f"{title} '{opts.log_target_name}' completed successfully"))
            state.command_completed = True
            if not has_duration(self.description):
                result.completed = True
        else:
            error_title = extract_error_from_stdout(lines)
            if error_title is None:
                error_title = f"Failed to {opts.log_action_name} exit-code {exit_code}"
            result.completed = True
            result.error = ActionError(error_title)
            state.command_completed = True
        result.messages = messages
        return result

    def stop(self, state: KubectlActionState) -> StopResult | None:
        opts = state.opts
        if not state.cmd_state_id:
            logger.debug("[%s=%s] Command not yet started, nothing to stop.", opts.log_target_type, opts.log_target_name)
            return None

        if not state.command_completed:
            _kill(state.pid, _lookup(state.cmd_state_id))
            logger.debug("[%s=%s] Command was still running - killed now.", opts.log_target_type, opts.log_target_name)

        command = _remove(state.cmd_state_id)
        if command is not None:
            _log_stdout(command.get_lines(True), opts)

        perform_rollback = True
        if opts.rollback_precondition_command is not None:
            logger.info(
                "[%s=%s] Check if Rollback for %s is required with command '%s'",
                opts.log_target_type, opts.log_target_name, opts.log_action_name,
                " ".join(opts.rollback_precondition_command),
            )
            ok, output = _run_combined(opts.rollback_precondition_command)
            logger.debug("Rollback precondition output: %s", output)
            if not ok:
                logger.info("Rollback precondition failed. Skip rollback for %s.", opts.log_action_name)
                perform_rollback = False

        if perform_rollback and opts.rollback_command is not None:
            logger.info(
                "[%s=%s] Rollback %s with command '%s'",
                opts.log_target_type, opts.log_target_name, opts.log_action_name,
                " ".join(opts.rollback_command),
            )
            ok, output = _run_combined(opts.rollback_command)
            if not ok:
                raise ActionError(
                    f"Failed to rollback {opts.log_action_name}: {output}",
                    RuntimeError("rollback command failed"),
                )
            logger.debug("[%s=%s] Rollback completed.", opts.log_target_type, opts.log_target_name)

        return StopResult(
            messages=[
                Message(
                    "info",
                    f"{_title(opts.log_action_name)} '{opts.log_target_name}' successfully stopped.",
                )
            ]
        )