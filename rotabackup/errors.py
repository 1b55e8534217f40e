"""
Exception hierarchy for rotabackup.

Fatal errors stop a run before (or instead of) any mutation of the staging
tree. Recoverable errors are isolated to one source or one period and are
only counted towards the run's error tally.
"""


class BackupError(Exception):
    """Base class for all backup errors."""
    pass


class FatalBackupError(BackupError):
    """Raised when a run must be aborted."""
    pass


class RecoverableBackupError(BackupError):
    """Raised for failures that are logged and counted, never propagated out of a run."""
    pass


class ConfigurationMissing(FatalBackupError):
    """Raised when the configuration file or a required option is missing."""
    pass
