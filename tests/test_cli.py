import pytest
import yaml
from click.testing import CliRunner
from lmigrate.cli import main

PLATFORM = '''
LABEL = "Platform"

def migrate(ctx):
    ctx.deploy("Platform")
'''

HISTORY = '''
LABEL = "History"
REQUIRES = ["Platform"]

def migrate(ctx):
    history = ctx.deploy("History")
    ctx.grant("History", "Platform", "event-authority")
    ctx.call("Platform", "setupEventsHistory", history)
'''

SANDBOX_LEDGER = '''
from lmigrate.deployer import InMemoryLedger


def connect():
    return InMemoryLedger()
'''

BROKEN = '''
def migrate(ctx):
    raise RuntimeError("boom")
'''


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    monkeypatch.setenv("LMIGRATE_HOME", str(home))
    return home


@pytest.fixture
def project(tmp_path, home, monkeypatch):
    """Config with a file store, a factory deployer and two migrations on disk."""
    (tmp_path / "sandbox_ledger.py").write_text(SANDBOX_LEDGER)
    monkeypatch.syspath_prepend(str(tmp_path))

    migrations = tmp_path / "migrations"
    migrations.mkdir()
    (migrations / "1_deploy_platform.py").write_text(PLATFORM)
    (migrations / "2_deploy_history.py").write_text(HISTORY)

    home.mkdir(parents=True)
    (home / "config.yaml").write_text(yaml.safe_dump({
        "target": "development",
        "migrations_dir": str(migrations),
        "store": "file",
        "store_path": str(tmp_path / "records"),
        "deployer": "sandbox_ledger:connect",
        "log_level": "WARNING",
    }))
    return migrations


def test_init_command_creates_files(runner, home):
    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert "Initialized lmigrate config" in result.output

    assert (home / "config.yaml").exists()
    assert (home / ".env").exists()

    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert cfg["target"] == "development"
    assert cfg["store"] == "memory"
    assert cfg["deployer"] == "memory"
    assert cfg["store_path"] == str(home / "records")


def test_init_does_not_overwrite_without_force(runner, home):
    home.mkdir(parents=True)
    (home / "config.yaml").write_text("existing: true")

    result = runner.invoke(main, ["init"])
    assert result.exit_code == 1
    assert "Config already exists" in result.output
    assert (home / "config.yaml").read_text() == "existing: true"


def test_init_force_overwrites(runner, home):
    home.mkdir(parents=True)
    (home / "config.yaml").write_text("existing: true")

    result = runner.invoke(main, ["init", "--force"])
    assert result.exit_code == 0

    cfg = yaml.safe_load((home / "config.yaml").read_text())
    assert "target" in cfg


def test_command_without_config(runner, home):
    result = runner.invoke(main, ["status"])
    assert result.exit_code == 1
    assert "Config not loaded" in result.output


def test_migrate_then_up_to_date(runner, project):
    result = runner.invoke(main, ["migrate"])
    assert result.exit_code == 0, result.output
    assert "✓ [1] Platform" in result.output
    assert "✓ [2] History" in result.output

    result = runner.invoke(main, ["migrate"])
    assert result.exit_code == 0
    assert "✓ development is up to date" in result.output


def test_migrate_to_index(runner, project):
    result = runner.invoke(main, ["migrate", "--to", "1"])
    assert result.exit_code == 0
    assert "✓ [1] Platform" in result.output
    assert "History" not in result.output


def test_dry_run(runner, project):
    result = runner.invoke(main, ["migrate", "--dry-run"])
    assert result.exit_code == 0
    assert "DRY RUN MODE" in result.output
    assert "would run 1: Platform" in result.output
    assert "would run 2: History" in result.output

    # Nothing was recorded
    result = runner.invoke(main, ["status"])
    assert "completed" not in result.output


def test_status(runner, project):
    runner.invoke(main, ["migrate", "--to", "1"])

    result = runner.invoke(main, ["status"])
    assert result.exit_code == 0
    assert "Target: development" in result.output
    lines = result.output.splitlines()
    assert any("1" in line and "completed" in line and "Platform" in line for line in lines)
    assert any("2" in line and "pending" in line and "History" in line for line in lines)


def test_status_other_target(runner, project):
    runner.invoke(main, ["migrate"])

    result = runner.invoke(main, ["status", "--target", "kovan"])
    assert "Target: kovan" in result.output
    assert "completed" not in result.output


def test_components(runner, project):
    result = runner.invoke(main, ["components"])
    assert "No components deployed" in result.output

    runner.invoke(main, ["migrate"])
    result = runner.invoke(main, ["components"])
    assert result.exit_code == 0
    assert "Platform" in result.output
    assert "History" in result.output
    assert "0x" in result.output


def test_failing_step_exits_nonzero(runner, project):
    (project / "3_broken.py").write_text(BROKEN)

    result = runner.invoke(main, ["migrate"])
    assert result.exit_code == 1
    assert "✗ Step 3 (broken) failed: boom" in result.output

    # Earlier steps stay applied; the failed one is retried next time
    result = runner.invoke(main, ["status"])
    assert "failed" in result.output
    assert result.output.count("completed") == 2


def test_unnumbered_migration_file(runner, project):
    (project / "deploy_later.py").write_text(PLATFORM)

    result = runner.invoke(main, ["migrate"])
    assert result.exit_code == 1
    assert "deploy_later" in result.output


def test_memory_deployer_with_durable_store_rejected(runner, project, home):
    cfg = yaml.safe_load((home / "config.yaml").read_text())
    cfg["deployer"] = "memory"
    (home / "config.yaml").write_text(yaml.safe_dump(cfg))

    result = runner.invoke(main, ["migrate"])
    assert result.exit_code == 1
    assert "cannot record to a durable 'file' store" in result.output


def test_removed_failed_step_blocks_later_steps(runner, project):
    (project / "3_broken.py").write_text(BROKEN)
    runner.invoke(main, ["migrate"])

    (project / "3_broken.py").unlink()
    (project / "4_deploy_voting.py").write_text(PLATFORM.replace("Platform", "Voting"))

    result = runner.invoke(main, ["migrate"])
    assert result.exit_code == 1
    assert "Step 3 (broken) is failed" in result.output
    assert "✓ [4]" not in result.output
