"""
lmigrate - Deployment migration sequencer

Applies numbered deployment steps to a ledger target exactly once, in index
order, wiring component addresses and authorization grants between them.
"""

__version__ = "0.1.0"


__all__ = [
    "Sequencer",
    "SequenceResult",
    "MigrationStep",
    "StepContext",
    "migration",
    "load_steps",
    "ComponentRegistry",
    "AuthorizationWiring",
    "Deployer",
    "InMemoryLedger",
    "LmigrateConfig",
    "load_config",
    "get_lmigrate_home",
]

from .config import LmigrateConfig, load_config, get_lmigrate_home
from .deployer import Deployer, InMemoryLedger
from .registry import ComponentRegistry
from .sequencer import Sequencer, SequenceResult
from .steps import MigrationStep, StepContext, load_steps, migration
from .wiring import AuthorizationWiring
