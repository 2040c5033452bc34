from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import typer

from modforge.core.errors import ErrorCode
from modforge.core.result import Err
from modforge.output.console import ConsoleProtocol, RichConsole, Style
from modforge.pipeline.config import CONFIG_FILE_NAME, load_build_config
from modforge.pipeline.model import BuildRequest

VERBOSE_ENV = "MODFORGE_VERBOSE"


@dataclass(frozen=True, slots=True)
class CLIContext:
    config_path: Path
    request: BuildRequest
    console: ConsoleProtocol


def is_verbose() -> bool:
    return os.environ.get(VERBOSE_ENV, "").strip() in ("1", "true", "yes")


def build_context(config: Path | None = None) -> CLIContext:
    console = RichConsole(verbose=is_verbose())
    path = (config or Path.cwd() / CONFIG_FILE_NAME).expanduser()

    result = load_build_config(path)
    if isinstance(result, Err):
        error = result.error
        console.error(error.message)
        if error.hint:
            console.print(f"hint: {error.hint}", Style.DIM)
        code = ErrorCode.IO_ERROR if not path.exists() else ErrorCode.USER_ERROR
        raise typer.Exit(code=int(code))

    return CLIContext(config_path=path, request=result.value, console=console)
