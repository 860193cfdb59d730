"""
FoundationMigrator - capacity tier migrations with backup, validation and rollback
"""

__version__ = "0.1.0"

from .core import FoundationMigrator, build_settings
from .errors import MigratorError

__all__ = ["FoundationMigrator", "MigratorError", "build_settings"]
