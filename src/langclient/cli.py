"""langclient CLI.

Commands:
    langclient check              - Connect, handshake, print server info
    langclient run SCENARIO       - Drive a server through a YAML scenario

Scenario files list steps executed in order against one session:

    workspace:
      name: demo
      uri: file:///home/user/demo/
    steps:
      - open: {uri: "file:///home/user/demo/main.go", language: go, file: data/template.go}
      - save: {uri: "file:///home/user/demo/go.mod", file: data/go.mod}
      - execute: {command: gopls.tidy, arguments: {URIs: ["file:///home/user/demo/go.mod"]}}
      - complete: {uri: "file:///home/user/demo/main.go", line: 7, character: 5}

Document text comes from inline `text` or a `file` path resolved relative
to the scenario. Each step prints one JSON line to stdout.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

import click
import yaml

from .config import FRAMINGS, NETWORKS, SessionConfig, load_config
from .errors import ConfigError, SessionError
from .logging_config import configure_logging
from .session import Session

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


class ScenarioError(ConfigError):
    """Invalid scenario file."""


def _load_config(ctx: click.Context) -> SessionConfig:
    options = ctx.obj or {}
    try:
        return load_config(
            options.get("config_path"),
            network=options.get("network"),
            address=options.get("address"),
            framing=options.get("framing"),
        )
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(2)


def _emit(record: dict[str, Any]) -> None:
    click.echo(json.dumps(record, ensure_ascii=False, default=str))


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML config file",
)
@click.option("--network", type=click.Choice(list(NETWORKS)), default=None, help="Transport kind")
@click.option("--address", default=None, help="host:port, socket path, or server command")
@click.option("--framing", type=click.Choice(list(FRAMINGS)), default=None, help="Message framing")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    help="Log level for stderr",
)
@click.option("--log-dir", type=click.Path(file_okay=False), default=None, help="Write rotating log files here")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str | None,
    network: str | None,
    address: str | None,
    framing: str | None,
    log_level: str,
    log_dir: str | None,
) -> None:
    """langclient - drive a language server from the command line."""
    configure_logging(log_level, log_dir)
    ctx.obj = {
        "config_path": config_path,
        "network": network,
        "address": address,
        "framing": framing,
    }
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# =============================================================================
# Check Command
# =============================================================================


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Connect, run the handshake, print server info as JSON, and shut down."""
    config = _load_config(ctx)

    async def execute() -> None:
        async with Session(config) as session:
            result = await session.handshake()
            info = {
                "server": result.serverInfo.model_dump(exclude_none=True) if result.serverInfo else None,
                "capabilities": result.capabilities,
            }
            click.echo(json.dumps(info, indent=2, ensure_ascii=False))

    try:
        asyncio.run(execute())
    except SessionError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


# =============================================================================
# Scenario Runner
# =============================================================================


def load_scenario(path: Path) -> dict[str, Any]:
    """Read and validate a scenario file."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ScenarioError(f"Cannot read scenario {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ScenarioError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
        raise ScenarioError(f"Scenario {path} must be a mapping with a 'steps' list")

    for index, step in enumerate(data["steps"]):
        if not isinstance(step, dict) or len(step) != 1:
            raise ScenarioError(f"Step {index} must be a single-key mapping, got {step!r}")
        action, args = next(iter(step.items()))
        if action not in STEP_ACTIONS:
            raise ScenarioError(f"Step {index}: unknown action '{action}'")
        if not isinstance(args, dict):
            raise ScenarioError(f"Step {index} ({action}): arguments must be a mapping")
    return data


def _require_arg(args: dict[str, Any], name: str, action: str) -> Any:
    if name not in args:
        raise ScenarioError(f"{action}: missing '{name}'")
    return args[name]


def _document_text(args: dict[str, Any], base_dir: Path, action: str) -> str:
    """Inline `text`, or the contents of `file` relative to the scenario."""
    if "text" in args:
        return str(args["text"])
    if "file" in args:
        path = base_dir / args["file"]
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ScenarioError(f"{action}: cannot read fixture {path}: {e}") from e
    raise ScenarioError(f"{action}: needs 'text' or 'file'")


async def _step_open(session: Session, args: dict[str, Any], base_dir: Path) -> Any:
    uri = _require_arg(args, "uri", "open")
    handle = await session.open_document(
        uri, args.get("language", "plaintext"), _document_text(args, base_dir, "open")
    )
    return {"version": handle.version}


async def _step_change(session: Session, args: dict[str, Any], base_dir: Path) -> Any:
    uri = _require_arg(args, "uri", "change")
    handle = await session.change_document(uri, _document_text(args, base_dir, "change"))
    return {"version": handle.version}


async def _step_save(session: Session, args: dict[str, Any], base_dir: Path) -> Any:
    uri = _require_arg(args, "uri", "save")
    await session.save_document(uri, _document_text(args, base_dir, "save"))
    return None


async def _step_close(session: Session, args: dict[str, Any], base_dir: Path) -> Any:
    await session.close_document(_require_arg(args, "uri", "close"))
    return None


async def _step_execute(session: Session, args: dict[str, Any], base_dir: Path) -> Any:
    command = _require_arg(args, "command", "execute")
    return await session.execute_command(command, args.get("arguments"))


async def _step_complete(session: Session, args: dict[str, Any], base_dir: Path) -> Any:
    items = await session.query_completion(
        _require_arg(args, "uri", "complete"),
        int(_require_arg(args, "line", "complete")),
        int(_require_arg(args, "character", "complete")),
    )
    return [item.model_dump(exclude_none=True) for item in items]


async def _step_hover(session: Session, args: dict[str, Any], base_dir: Path) -> Any:
    hover = await session.hover(
        _require_arg(args, "uri", "hover"),
        int(_require_arg(args, "line", "hover")),
        int(_require_arg(args, "character", "hover")),
    )
    return hover.model_dump(exclude_none=True) if hover else None


StepHandler = Callable[[Session, dict[str, Any], Path], Coroutine[Any, Any, Any]]

STEP_ACTIONS: dict[str, StepHandler] = {
    "open": _step_open,
    "change": _step_change,
    "save": _step_save,
    "close": _step_close,
    "execute": _step_execute,
    "complete": _step_complete,
    "hover": _step_hover,
}


async def run_scenario(
    config: SessionConfig,
    scenario: dict[str, Any],
    base_dir: Path,
    emit: Callable[[dict[str, Any]], None] = _emit,
) -> None:
    """Run every step of a scenario on one session, in order."""
    workspace = scenario.get("workspace") or {}

    async with Session(config) as session:
        result = await session.handshake(
            workspace_name=workspace.get("name"),
            workspace_uri=workspace.get("uri"),
        )
        emit(
            {
                "step": "handshake",
                "result": result.serverInfo.model_dump(exclude_none=True) if result.serverInfo else None,
            }
        )

        for index, step in enumerate(scenario["steps"]):
            action, args = next(iter(step.items()))
            logger.info(f"Scenario step {index}: {action}")
            output = await STEP_ACTIONS[action](session, args, base_dir)
            emit({"step": index, "action": action, "result": output})


@main.command("run")
@click.argument("scenario", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def run_command(ctx: click.Context, scenario: str) -> None:
    """Execute a YAML scenario against the configured server.

    Examples:

        # Against a server already listening on TCP
        langclient --address 127.0.0.1:9877 run scenario.yaml

        # Launch the server over stdio
        langclient --network stdio --address "gopls serve" run scenario.yaml
    """
    config = _load_config(ctx)
    path = Path(scenario)

    try:
        data = load_scenario(path)
    except ScenarioError as e:
        click.echo(f"Scenario error: {e}", err=True)
        sys.exit(2)

    try:
        asyncio.run(run_scenario(config, data, path.parent))
    except (SessionError, ValueError) as e:
        click.echo(json.dumps({"error": str(e), "type": type(e).__name__}), err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
