"""entitymigrate CLI - migrate legacy entities to descriptors.

Uses tyro for type-driven CLI generation from dataclasses.
"""

from __future__ import annotations

from typing import Annotated

import tyro

from entitymigrate.cli.commands.inspect import Inspect
from entitymigrate.cli.commands.migrate import Migrate
from entitymigrate.cli.commands.refs import Refs

_Migrate = Annotated[Migrate, tyro.conf.subcommand("migrate")]
_Inspect = Annotated[Inspect, tyro.conf.subcommand("inspect")]
_Refs = Annotated[Refs, tyro.conf.subcommand("refs")]

Command = _Migrate | _Inspect | _Refs


def main(args: list[str] | None = None) -> int:
    """Entry point for the CLI."""
    # configure structlog (respects ENTITYMIGRATE_DEBUG env var)
    from entitymigrate.logging_config import configure_logging

    configure_logging()

    try:
        cmd = tyro.cli(
            Command,
            prog="entitymigrate",
            description="Migrate legacy entities to the descriptor pattern.",
            args=args,
        )
        return cmd.run()
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        from entitymigrate import console

        console.error(str(e))
        return 1
