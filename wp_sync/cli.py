#!/usr/bin/env python3
"""
CLI for WordPress database sync

Synchronizes a WordPress database between production, staging and
development:

    wp-sync prod_to_dev
    wp-sync dev_to_stage --dry-run
    wp-sync stage_to_prod --yes
"""

import sys

import click

from wp_sync import __version__
from wp_sync.config_yaml import display, load_settings
from wp_sync.environments import DEFAULT_DIRECTION
from wp_sync.exceptions import WPSyncError
from wp_sync.sync.orchestrator import sync_database


@click.command()
@click.argument("direction", default=DEFAULT_DIRECTION, required=False)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation before overwriting production")
@click.option("--dry-run", is_flag=True, help="Run the checks and show the plan without making changes")
@click.option("--timeout", type=click.IntRange(min=0), default=None,
              help="Timeout in seconds for each remote step (0 disables it)")
@click.option("--config", "config_file", type=click.Path(dir_okay=False), default=None,
              help="Path to the YAML configuration file (default: ./wp-sync.yaml)")
@click.option("--show-config", is_flag=True, help="Show the loaded configuration and exit")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed information during execution")
@click.version_option(__version__)
def cli(direction, yes, dry_run, timeout, config_file, show_config, verbose):
    """
    Synchronizes the WordPress database between environments.

    DIRECTION has the form SOURCE_to_TARGET, where SOURCE and TARGET are
    one of prod, stage or dev. Default: prod_to_dev.

    The target database is always backed up first. The users and
    usermeta tables are never copied. Syncing to production asks for
    confirmation unless --yes is given.

    Examples:
      wp-sync                      # production -> development
      wp-sync dev_to_stage -v      # development -> staging, verbose
      wp-sync stage_to_prod --yes  # staging -> production, no prompt
      wp-sync prod_to_dev --dry-run
    """
    try:
        if show_config:
            display(load_settings(config_file))
            return

        sync_database(
            direction=direction,
            config_file=config_file,
            assume_yes=yes,
            dry_run=dry_run,
            timeout=timeout,
            verbose=verbose,
        )
    except WPSyncError as e:
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)


def main():
    """
    Main entry point
    """
    try:
        cli()
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
