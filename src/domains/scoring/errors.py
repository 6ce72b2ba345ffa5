"""Scoring engine error taxonomy.

Base classes follow the builtins the API error handler already maps:
ValueError -> 400, LookupError -> 404, anything else -> 500.
"""


class ScoringError(Exception):
    """Base class for every error raised by the scoring engine."""


class ConfigMissing(ScoringError, LookupError):
    """No active weight configuration exists for the requested kind."""


class ConfigInvalid(ScoringError, ValueError):
    """The weight configuration is malformed (bad weights or band table)."""


class ScopeResolutionFailure(ScoringError, RuntimeError):
    """A batch scope could not be resolved into an entity id list."""


class ScopeBusy(ScoringError, RuntimeError):
    """Another running batch job already holds the same scope."""


class ItemFetchFailure(ScoringError, LookupError):
    """Source rows for a single entity could not be loaded."""


class ExternalServiceFailure(ScoringError, RuntimeError):
    """The explanation/scoring model call failed or returned an invalid body."""


class PersistenceFailure(ScoringError, RuntimeError):
    """Writing a score, alert or denormalized band failed."""


class JobNotFound(ScoringError, LookupError):
    pass


class AlertNotFound(ScoringError, LookupError):
    pass
