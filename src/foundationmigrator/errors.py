"""Domain errors for FoundationMigrator."""


class MigratorError(RuntimeError):
    """Raised when a migration cannot continue safely."""


class NotFoundError(MigratorError):
    """No configuration document exists for the requested tier."""


class ParseError(MigratorError):
    """A stored configuration document is malformed."""


class InvalidMigrationError(MigratorError):
    """The requested migration is not allowed or its target is corrupt."""


class PersistenceError(MigratorError):
    """The current configuration document could not be written."""


class NotInstalledError(MigratorError):
    """No installation exists yet."""


class BackupFailedError(MigratorError):
    """The pre-migration backup could not be created."""


class MigrationInProgressError(MigratorError):
    """Another migration holds the installation lock."""


class NoBackupAvailableError(MigratorError):
    """Rollback was requested but no backup exists for the tier."""
