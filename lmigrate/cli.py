"""
CLI interface for lmigrate.

Provides commands to inspect and apply deployment migrations.

Migrations are NNN_name.py modules in the configured migrations directory,
each defining migrate(ctx). Progress is recorded per target in the
configured record store, so `lmigrate migrate` only applies what is new.
"""

import click

from lmigrate import __version__


@click.group()
@click.version_option(version=__version__, prog_name="lmigrate")
@click.pass_context
def main(ctx):
    """
    lmigrate - Deployment migration sequencer.

    Apply numbered deployment steps to a ledger target exactly once.
    """
    from lmigrate.config import load_config

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config()
    except Exception as e:
        # init works without a config; other commands check config_error
        ctx.obj["config_error"] = str(e)


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'lmigrate init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _build(config, target=None):
    """Create (sequencer, steps) from config."""
    from lmigrate.deployer import load_deployer
    from lmigrate.notify import LoggingSink
    from lmigrate.sequencer import Sequencer
    from lmigrate.steps import load_steps
    from lmigrate.store import open_store
    from lmigrate.utils import setup_logging

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file_path,
    )
    sequencer = Sequencer(
        store=open_store(config.store, config.store_location),
        deployer=load_deployer(config.deployer, config.deployer_options),
        target=target or config.target,
        sinks=[LoggingSink()],
        capability_methods=config.capability_methods,
    )
    return sequencer, load_steps(config.migrations_path)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize lmigrate configuration."""
    from lmigrate.config import LmigrateConfig, get_lmigrate_home
    import yaml

    home = get_lmigrate_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = LmigrateConfig(
        store_path=str(home / "records"),
        env_file=str(home / ".env"),
    ).to_dict()
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# LEDGER_RPC_URL=...\n# DEPLOYER_KEY_FILE=...\n")

    click.echo(f"Initialized lmigrate config at {cfg_path}")


@main.command("status")
@click.option("--target", help="Target ledger (defaults to config target)")
@click.pass_context
def status(ctx, target):
    """Show each migration and its status on the target."""
    from lmigrate.errors import LmigrateError

    config = _require_config(ctx)
    try:
        sequencer, steps = _build(config, target)
        rows = sequencer.status(steps)
    except (LmigrateError, ValueError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Target: {sequencer.target}")
    for step, record in rows:
        state = record.status.value if record else "pending"
        applied = f"  {record.applied_at.isoformat()}" if record and record.applied_at else ""
        click.echo(f"  {step.index:>4}  {state:<10} {step.label}{applied}")


@main.command("migrate")
@click.option("--target", help="Target ledger (defaults to config target)")
@click.option("--to", "to_index", type=int, help="Stop after this step index")
@click.option("--dry-run", is_flag=True, help="List pending steps without running them")
@click.pass_context
def migrate(ctx, target, to_index, dry_run: bool):
    """
    Apply pending migrations in index order.

    Examples:

        lmigrate migrate

        lmigrate migrate --target mainnet --to 153

        lmigrate migrate --dry-run
    """
    from lmigrate.errors import LmigrateError, StepFailed

    config = _require_config(ctx)
    try:
        sequencer, steps = _build(config, target)
        if dry_run:
            pending = sequencer.plan(steps, to_index=to_index)
            click.echo("=== DRY RUN MODE === (no ledger transactions)")
            if not pending:
                click.echo("Nothing to migrate")
            for step in pending:
                click.echo(f"  would run {step.index}: {step.label}")
            return

        result = sequencer.run(steps, to_index=to_index)
    except StepFailed as e:
        click.echo(f"✗ Step {e.index} ({e.label}) failed: {e.cause}", err=True)
        raise SystemExit(1)
    except (LmigrateError, ValueError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    if not result.applied:
        click.echo(f"✓ {result.target} is up to date")
        return
    for event in result.notifications:
        click.echo(f"✓ [{event.index}] {event.label}")


@main.command("components")
@click.option("--target", help="Target ledger (defaults to config target)")
@click.pass_context
def components(ctx, target):
    """List deployed components on the target."""
    from lmigrate.errors import LmigrateError
    from lmigrate.registry import ComponentRegistry
    from lmigrate.store import open_store

    config = _require_config(ctx)
    try:
        store = open_store(config.store, config.store_location)
        loaded = store.load_records(target or config.target)
    except (LmigrateError, ValueError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    registry = ComponentRegistry(loaded.components)
    snapshot = registry.snapshot()
    if not snapshot:
        click.echo("No components deployed")
        return
    for name, address in snapshot.items():
        click.echo(f"  {name:<32} {address}")
