"""
Entry point of `entity-sync` CLI.

Commands operate on a scenario file, which declares entity types, an
original collection and edits to replay:

- `check`: validate scenario
- `diff`: show edits tree resulting from replaying edits
- `plan`: show sync actions which would be executed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import dotenv
from pydantic import ValidationError
from typer import Argument, BadParameter, Context, Exit, Option

from ...core import EntitySyncError, SyncedEntityStorage, SyncStrategy
from ..config import ScenarioConfig
from ._utils import MainTyper, console, get_root_context, logger, lookup_param

dotenv.load_dotenv()

app = MainTyper(
    "entity-sync",
    help="Inspect edits of entity collections and their sync actions",
)

SCENARIO_HELP = ".yaml file containing types, original collection and edits"


class StrategyChoice(str, Enum):
    FULL_TREE = "full-tree"
    SPLIT_TREE = "split-tree"

    @property
    def strategy(self) -> SyncStrategy:
        return SyncStrategy(self.name)


@app.callback()
def main(
    ctx: Context,
    log_level: str = Option(
        "INFO",
        help="Logging level, e.g. DEBUG",
        envvar="ENTITY_SYNC_LOG_LEVEL",
    ),
):
    # load environment variables from .env file if it exists
    dotenv.load_dotenv(Path(".env").resolve(), override=True)

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise BadParameter(
            f"invalid log level '{log_level}'",
            ctx=ctx,
            param=lookup_param(ctx, "log_level"),
        )

    logger.setLevel(level)
    ctx.obj = RootContext(ctx=ctx)


@app.command()
def check(
    ctx: Context,
    scenario: Path = Argument(
        "entity-sync.yaml",
        help=SCENARIO_HELP,
        envvar="ENTITY_SYNC_SCENARIO",
        dir_okay=False,
    ),
):
    """
    Check scenario: load types and original collection, replay edits
    """
    root_context = get_root_context(ctx)
    config = root_context.load_scenario(ctx, scenario)
    storage = root_context.create_storage(config, scenario)

    logger.info(
        f"Scenario '{scenario}' is valid: {len(config.types)} type(s), {len(storage.original_collection)} original entities, {len(config.edits)} edit(s)"
    )


@app.command()
def diff(
    ctx: Context,
    scenario: Path = Argument(
        "entity-sync.yaml",
        help=SCENARIO_HELP,
        envvar="ENTITY_SYNC_SCENARIO",
        dir_okay=False,
    ),
):
    """
    Print edits tree and edited locations after replaying edits
    """
    root_context = get_root_context(ctx)
    config = root_context.load_scenario(ctx, scenario)
    storage = root_context.create_storage(config, scenario)

    if not storage.has_edits():
        logger.info("No changes")
        return

    console.print_json(data=storage.get_edits())

    for location in storage.get_edited_locations():
        console.print(f"  [bold]{location}[/bold]")


@app.command()
def plan(
    ctx: Context,
    scenario: Path = Argument(
        "entity-sync.yaml",
        help=SCENARIO_HELP,
        envvar="ENTITY_SYNC_SCENARIO",
        dir_okay=False,
    ),
    strategy: StrategyChoice | None = Option(
        None,
        help="Sync strategy, overrides scenario",
        case_sensitive=False,
    ),
    location: str = Option(
        "",
        help="Location of entity or collection to sync, whole storage by default",
    ),
):
    """
    Print sync actions for replayed edits
    """
    root_context = get_root_context(ctx)
    config = root_context.load_scenario(ctx, scenario)
    storage = root_context.create_storage(config, scenario)

    if strategy is not None:
        storage.sync_strategy = strategy.strategy

    try:
        actions = storage.sync(location)
    except EntitySyncError as e:
        logger.error(f"Failed to plan sync at '{location}': {e}")
        raise Exit(code=1)

    for action in actions:
        console.print(
            f"{action.action_type.markup} <{action.prop_type.type_name}> '{action.location}'"
        )
        console.print_json(data=action.payload)

    logger.info(
        f"{len(actions)} sync action(s) using {storage.sync_strategy.value}"
    )


def run():
    app()


@dataclass(kw_only=True)
class RootContext:
    ctx: Context

    def load_scenario(self, ctx: Context, scenario: Path) -> ScenarioConfig:
        # ensure scenario file exists
        if not scenario.is_file():
            raise BadParameter(
                f"file does not exist: {scenario}",
                ctx=ctx,
                param=lookup_param(ctx, "scenario"),
            )

        try:
            return ScenarioConfig.load_yaml(scenario)
        except (ValueError, ValidationError) as e:
            raise BadParameter(
                f"failed to load scenario '{scenario}': {e}",
                ctx=ctx,
                param=lookup_param(ctx, "scenario"),
            )

    def create_storage(
        self, config: ScenarioConfig, scenario: Path
    ) -> SyncedEntityStorage:
        """
        Create storage and replay edits of scenario.
        """
        try:
            storage = config.create_storage(logger=logger)
            config.apply_edits(storage)
        except EntitySyncError as e:
            logger.error(f"Failed to replay scenario '{scenario}': {e}")
            raise Exit(code=1)

        return storage


if __name__ == "__main__":
    app()
