"""CLI entry point for budgetvault (bv command)."""

import click

from budgetvault import __version__
from budgetvault.cli.backup_cmd import auth_group, backup_group
from budgetvault.cli.daemon_cmd import daemon_group


@click.group()
@click.version_option(version=__version__, prog_name="budgetvault")
def cli() -> None:
    """budgetvault: cloud backup for your budget database."""


cli.add_command(backup_group)
cli.add_command(auth_group)
cli.add_command(daemon_group)


if __name__ == "__main__":
    cli()
