from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer

from mrel.core.config import ReleaseConfig, load_config_or_default
from mrel.core.errors import ErrorCode
from mrel.core.result import Err
from mrel.core.workspace import Workspace, detect_workspace
from mrel.output.console import ConsoleProtocol, RichConsole
from mrel.output.prompt import PromptProtocol, TyperPrompt
from mrel.platform.http import HttpClient, RealHttpClient


@dataclass(frozen=True, slots=True)
class CLIContext:
    workspace: Workspace
    config: ReleaseConfig
    console: ConsoleProtocol
    prompt: PromptProtocol
    http: HttpClient


def exit_with(message: str, *, code: ErrorCode) -> NoReturn:
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(code=int(code))


def build_context(workspace: Path | None = None) -> CLIContext:
    workspace_result = detect_workspace(explicit=workspace)
    if isinstance(workspace_result, Err):
        exit_with(workspace_result.error.message, code=ErrorCode.ENV_ERROR)

    root = workspace_result.value.root
    config_result = load_config_or_default(root)
    if isinstance(config_result, Err):
        exit_with(config_result.error.message, code=ErrorCode.ENV_ERROR)

    config = config_result.value
    return CLIContext(
        workspace=workspace_result.value,
        config=config,
        console=RichConsole(),
        prompt=TyperPrompt(),
        http=RealHttpClient(user_agent=config.github.user_agent),
    )
