"""Subprocess execution with Result-based error handling.

``run`` wraps ``subprocess.run`` for a single command. ``run_script`` writes a
PowerShell script body to a uniquely named temp file and executes it through
``pwsh``; the step adapters in ``modforge.services`` use it for everything
that needs the PowerShell module system (lookups, docs, formatting, signing,
tests, publishing).

Scripts report a structured failure by printing a marker line to stdout::

    MODFORGE::ERROR::<base64 utf-8 message>

``failure_message`` prefers that marker over the raw stderr tail.

Usage:
    result = run(["dotnet", "--version"], cwd=Path("."))
    match result:
        case Ok(stdout):
            print(stdout)
        case Err(error):
            print(f"Failed: {error.stderr}")
"""

from __future__ import annotations

import base64
import binascii
import shutil
import subprocess
import tempfile
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from modforge.core.result import Err, Ok, Result

__all__ = [
    "ProcessError",
    "ERROR_MARKER",
    "decode_marker",
    "encode_marker",
    "failure_message",
    "find_shell",
    "run",
    "run_script",
    "tail",
]

ERROR_MARKER = "MODFORGE::ERROR::"

TAIL_MAX_LINES = 40
TAIL_MAX_CHARS = 4000


@dataclass(frozen=True, slots=True)
class ProcessError:
    """Error from a failed subprocess execution.

    Attributes:
        command: The command that was executed.
        returncode: The exit code of the process (-1 for timeout or launch failure).
        stdout: Standard output (may be empty).
        stderr: Standard error (contains error details).
        timed_out: True when the process was killed after its timeout.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    def __str__(self) -> str:
        cmd_str = " ".join(self.command[:3])
        if len(self.command) > 3:
            cmd_str += " ..."
        return f"{cmd_str} failed (exit {self.returncode})"


def run(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    timeout: float | None = None,
) -> Result[str, ProcessError]:
    """Execute a command and return stdout or error.

    Args:
        cmd: Command and arguments to execute.
        cwd: Working directory for the command.
        env: Environment variables (uses current env if None).
        timeout: Maximum seconds to wait (None for no limit).

    Returns:
        Ok(stdout) on success, Err(ProcessError) on failure.
    """
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=env,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        partial = e.stdout if isinstance(e.stdout, str) else ""
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=-1,
                stdout=partial,
                stderr=f"Command timed out after {timeout}s",
                timed_out=True,
            )
        )
    except OSError as e:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=-1,
                stdout="",
                stderr=str(e),
            )
        )

    if proc.returncode != 0:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=proc.returncode,
                stdout=proc.stdout or "",
                stderr=proc.stderr or "",
            )
        )

    return Ok(proc.stdout or "")


def find_shell(preferred: str = "pwsh") -> str | None:
    """Locate the PowerShell executable (``pwsh`` first, then Windows PowerShell)."""
    for candidate in (preferred, "pwsh", "powershell"):
        found = shutil.which(candidate)
        if found:
            return found
    return None


def run_script(
    body: str,
    args: Sequence[str] = (),
    *,
    cwd: Path,
    run_id: str,
    shell: str = "pwsh",
    timeout: float | None = None,
    temp_dir: Path | None = None,
) -> Result[str, ProcessError]:
    """Write ``body`` to a temp ``.ps1`` file and run it with ``args``.

    The script file is named after the run id plus a random suffix and is
    removed after execution regardless of outcome.
    """
    exe = find_shell(shell)
    if exe is None:
        return Err(
            ProcessError(
                command=(shell,),
                returncode=-1,
                stdout="",
                stderr=f"{shell} not found on PATH",
            )
        )

    base = temp_dir or Path(tempfile.gettempdir()) / "modforge" / "scripts"
    base.mkdir(parents=True, exist_ok=True)
    script_path = base / f"{run_id}_{uuid.uuid4().hex[:8]}.ps1"
    # BOM so Windows PowerShell reads non-ASCII literals correctly.
    script_path.write_text(body, encoding="utf-8-sig")
    try:
        cmd = [
            exe,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-File",
            str(script_path),
            *args,
        ]
        return run(cmd, cwd=cwd, timeout=timeout)
    finally:
        script_path.unlink(missing_ok=True)


def encode_marker(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_marker(value: str) -> str:
    """Decode a base64 marker field; undecodable input yields an empty string."""
    try:
        return base64.b64decode(value.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return ""


def tail(text: str, *, max_lines: int = TAIL_MAX_LINES, max_chars: int = TAIL_MAX_CHARS) -> str:
    """Return the last lines of ``text`` bounded by line count and size."""
    lines = text.strip().splitlines()
    out = "\n".join(lines[-max_lines:])
    if len(out) > max_chars:
        out = out[-max_chars:]
    return out


def failure_message(error: ProcessError) -> str:
    """Best human message for a failed script run."""
    for line in error.stdout.splitlines():
        if line.startswith(ERROR_MARKER):
            decoded = decode_marker(line[len(ERROR_MARKER) :])
            if decoded:
                return decoded
    if error.stderr.strip():
        return tail(error.stderr)
    return str(error)
