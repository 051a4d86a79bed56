import pytest

from lmigrate.deployer import InMemoryLedger
from lmigrate.notify import CollectingSink
from lmigrate.sequencer import Sequencer
from lmigrate.steps import migration
from lmigrate.store import InMemoryRecordStore


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def make_sequencer(store, ledger, sink):
    """Build a sequencer over the shared store; ledger and target overridable."""
    def factory(deployer=None, target="development", **kwargs):
        return Sequencer(
            store=store,
            deployer=deployer or ledger,
            target=target,
            sinks=[sink],
            **kwargs,
        )
    return factory


@pytest.fixture
def platform_steps():
    """Platform, then History wired to it (the events-history pattern)."""

    @migration("1_deploy_platform", label="Platform")
    def deploy_platform(ctx):
        ctx.deploy("Platform")

    @migration("2_deploy_history", label="History", requires=["Platform"])
    def deploy_history(ctx):
        history = ctx.deploy("History")
        ctx.grant("History", "Platform", "event-authority")
        ctx.call("Platform", "setupEventsHistory", history)

    return [deploy_platform, deploy_history]
