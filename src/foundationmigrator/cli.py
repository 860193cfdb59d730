import logging
import os

import click
from rich.logging import RichHandler

from .core import FoundationMigrator, MigratorError, build_settings, console
from .services.config_loader import ConfigLoader

DEFAULT_CONFIG_FILE = ".foundationmigrator.yml"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _configure_logging(verbose: bool, log_file):
    logger = logging.getLogger("foundationmigrator")
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


def _build_migrator(ctx: click.Context, **overrides) -> FoundationMigrator:
    options = ctx.obj
    config_values = options["config"]

    def resolve(key, default=None):
        return _resolve_option(overrides.get(key, options.get(key)), config_values, key, default)

    try:
        settings = build_settings(
            root=resolve("root"),
            tiers_dir=resolve("tiers_dir"),
            state_dir=resolve("state_dir"),
            backups_dir=resolve("backups_dir"),
            health_url=resolve("health_url"),
            health_timeout=float(resolve("health_timeout", default=5.0)),
            allow_downgrade=bool(resolve("allow_downgrade", default=False)),
            disable_removed_services=bool(resolve("disable_removed_services", default=False)),
            keep_backups=resolve("keep_backups"),
        )
    except (TypeError, ValueError) as exc:
        raise click.ClickException(f"Invalid configuration value: {exc}") from exc

    return FoundationMigrator(settings)


tier_choice = click.Choice(FoundationMigrator.VALID_TIERS)


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--root", required=False, type=click.Path(), help="Installation root directory.")
@click.option("--tiers-dir", required=False, type=click.Path(), help="Tier template directory.")
@click.option("--state-dir", required=False, type=click.Path(), help="Migrator state directory.")
@click.option("--backups-dir", required=False, type=click.Path(), help="Backup directory.")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, root, tiers_dir, state_dir, backups_dir, verbose, log_file):
    """Migrate a Foundation installation between capacity tiers."""
    try:
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = ConfigLoader().load(resolved_config)
    except MigratorError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    _configure_logging(verbose, log_file)

    ctx.obj = {
        "config": config_values,
        "root": root,
        "tiers_dir": tiers_dir,
        "state_dir": state_dir,
        "backups_dir": backups_dir,
    }


@main.command()
@click.argument("current", type=tier_choice)
@click.argument("target", type=tier_choice)
@click.option(
    "--allow-downgrade",
    is_flag=True,
    default=None,
    help="Allow migrating to a lower capacity tier.",
)
@click.option(
    "--disable-removed-services",
    is_flag=True,
    default=None,
    help="Disable services that the target tier no longer declares.",
)
@click.option("--health-url", required=False, help="Runtime health endpoint checked after migrating.")
@click.option(
    "--health-timeout",
    required=False,
    type=float,
    default=None,
    help="Seconds to wait for each health endpoint (default: 5).",
)
@click.option(
    "--keep-backups",
    required=False,
    type=int,
    default=None,
    help="Prune older backups of the source tier after a successful migration.",
)
@click.pass_context
def migrate(
    ctx,
    current,
    target,
    allow_downgrade,
    disable_removed_services,
    health_url,
    health_timeout,
    keep_backups,
):
    """Migrate the installation from CURRENT to TARGET tier."""
    migrator = _build_migrator(
        ctx,
        allow_downgrade=allow_downgrade,
        disable_removed_services=disable_removed_services,
        health_url=health_url,
        health_timeout=health_timeout,
        keep_backups=keep_backups,
    )
    raise SystemExit(migrator.run_migration(current, target))


@main.command()
@click.argument("current", type=tier_choice)
@click.argument("target", type=tier_choice)
@click.option("--allow-downgrade", is_flag=True, default=None)
@click.option("--disable-removed-services", is_flag=True, default=None)
@click.pass_context
def preview(ctx, current, target, allow_downgrade, disable_removed_services):
    """Print the plan for CURRENT -> TARGET without applying it."""
    migrator = _build_migrator(
        ctx,
        allow_downgrade=allow_downgrade,
        disable_removed_services=disable_removed_services,
    )
    try:
        plan = migrator.preview(current, target)
    except MigratorError as exc:
        raise click.ClickException(str(exc)) from exc
    migrator.reporter.render_plan(plan)


@main.command()
@click.argument("tier", type=tier_choice)
@click.option("--health-url", required=False, help="Runtime health endpoint checked after install.")
@click.option("--health-timeout", required=False, type=float, default=None)
@click.pass_context
def install(ctx, tier, health_url, health_timeout):
    """Install Foundation at capacity TIER."""
    migrator = _build_migrator(ctx, health_url=health_url, health_timeout=health_timeout)
    raise SystemExit(migrator.run_install(tier))


@main.command()
@click.confirmation_option(prompt="Remove Foundation and its managed files from this installation?")
@click.pass_context
def uninstall(ctx):
    """Remove Foundation. `rollback <tier>` restores it from the backup taken first."""
    migrator = _build_migrator(ctx)
    raise SystemExit(migrator.run_uninstall())


@main.command()
@click.argument("tier")
@click.option("--backup-id", required=False, help="Restore this backup instead of the latest.")
@click.pass_context
def rollback(ctx, tier, backup_id):
    """Restore the latest backup taken before migrating away from TIER."""
    migrator = _build_migrator(ctx)
    try:
        result = migrator.rollback(tier, backup_id=backup_id)
    except MigratorError as exc:
        raise click.ClickException(str(exc)) from exc

    migrator.reporter.render_rollback(result)
    if not result.restored:
        raise SystemExit(1)


@main.command()
@click.argument("tier")
@click.pass_context
def backups(ctx, tier):
    """List backups recorded for TIER, most recent first."""
    migrator = _build_migrator(ctx)
    found = migrator.list_backups(tier)
    if not found:
        console.print(f"No backups for tier {tier}.")
        return
    for backup in found:
        present = sum(1 for state in backup.entries.values() if state == "present")
        console.print(f"{backup.backup_id}  {backup.created_at}  {present} files")


@main.command()
@click.argument("tier")
@click.option("--keep", required=True, type=int, help="Number of recent backups to keep.")
@click.pass_context
def prune(ctx, tier, keep):
    """Delete all but the newest KEEP backups of TIER."""
    migrator = _build_migrator(ctx)
    try:
        removed = migrator.prune_backups(tier, keep)
    except MigratorError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"Removed {len(removed)} backups.")


@main.command()
@click.argument("transaction_id", required=False)
@click.pass_context
def history(ctx, transaction_id):
    """List recorded transactions, or show TRANSACTION_ID in full."""
    migrator = _build_migrator(ctx)
    if transaction_id is None:
        transaction_ids = migrator.list_transactions()
        if not transaction_ids:
            console.print("No transactions recorded.")
        for item in transaction_ids:
            console.print(item)
        return

    try:
        record = migrator.load_transaction(transaction_id)
    except MigratorError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print_json(data=record)


@main.command()
@click.pass_context
def status(ctx):
    """Show the installed capacity tier."""
    migrator = _build_migrator(ctx)
    try:
        document = migrator.status()
    except MigratorError as exc:
        raise click.ClickException(str(exc)) from exc

    if document is None:
        console.print("Foundation is not installed.")
        raise SystemExit(1)
    console.print(f"Installed tier: [bold]{document.tier}[/bold]")


if __name__ == "__main__":
    main()
