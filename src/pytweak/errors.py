class TweakError(Exception):
    """Base class for pytweak errors."""


class CatalogError(TweakError):
    """Raised when catalog data is malformed."""


class UnknownEntryError(TweakError):
    """Raised when an entry or probe id is not in the catalog."""


class ConfigLoadError(TweakError):
    """Raised when a configuration, snapshot or profile file cannot be parsed."""


class ValidationError(TweakError):
    """Raised when value validation fails."""


class UnknownSettingError(TweakError):
    """Raised when a preference key is unknown."""


class ReconcileError(TweakError):
    """Raised when a store mutation fails.

    ``target`` is the entry or probe id being reconciled (if known) and
    ``location`` the store location that failed.
    """

    def __init__(self, message: str, *, target: str | None = None, location=None):
        super().__init__(message)
        self.target = target
        self.location = location

    def tagged(self, target: str) -> "ReconcileError":
        if self.target is None:
            self.target = target
        return self


class AccessDeniedError(ReconcileError):
    """Raised when elevation failed, was refused or was insufficient."""


class StoreUnavailableError(ReconcileError):
    """Raised when a store root or path cannot be opened."""
