from .cancellation import CancellationToken
from .catalog import Catalog, ConfigEntry, TweakProbe, load_catalog
from .core import TweakEngine
from .detector import EntryState, ProbeState, StateDetector
from .errors import AccessDeniedError, StoreUnavailableError, TweakError
from .orchestrator import BulkOrchestrator, BulkResult
from .reconciler import DEFAULT, Reconciler
from .settings import SettingsCache

__all__ = [
    "AccessDeniedError",
    "BulkOrchestrator",
    "BulkResult",
    "CancellationToken",
    "Catalog",
    "ConfigEntry",
    "DEFAULT",
    "EntryState",
    "ProbeState",
    "Reconciler",
    "SettingsCache",
    "StateDetector",
    "StoreUnavailableError",
    "TweakEngine",
    "TweakError",
    "TweakProbe",
    "load_catalog",
]
