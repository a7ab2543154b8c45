"""
Publisher CLI entry point.

Main command group for the update publisher CLI.
"""

import click

from publisher import __version__
from publisher.src.utils.logging_config import get_logger


logger = get_logger("cli")


@click.group()
@click.version_option(version=__version__, prog_name="publisher")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """
    Update Publisher - release management for application auto-updates.

    Manage versions and builds, publish releases with fallback builds,
    generate the manifests client updaters poll, and check update
    eligibility. Every command accepts --channel (default: stable).

    Use 'publisher COMMAND --help' for more information on a command.
    """
    # Ensure context object exists for subcommands
    ctx.ensure_object(dict)
    logger.debug("CLI invoked", extra={"event": "cli.invoked", "command": ctx.invoked_subcommand})


# Import and register subcommands
from publisher.src.cli.version import version  # noqa: E402
from publisher.src.cli.build import build  # noqa: E402
from publisher.src.cli.publish import publish  # noqa: E402
from publisher.src.cli.manifest import manifest  # noqa: E402
from publisher.src.cli.update import update  # noqa: E402

cli.add_command(version)
cli.add_command(build)
cli.add_command(publish)
cli.add_command(manifest)
cli.add_command(update)


def main() -> None:
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
