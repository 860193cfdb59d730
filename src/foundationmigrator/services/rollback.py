"""Rollback of failed migrations from pre-migration backups."""

import os
from typing import Any, Dict, Optional

from foundationmigrator.errors import MigratorError, NoBackupAvailableError
from foundationmigrator.errors_catalog import actionable_error
from foundationmigrator.models import Backup, RollbackResult
from foundationmigrator.services.filesystem import write_bytes_atomic


class RollbackController:
    """Restores files and the current document from a backup.

    A rollback that cannot be verified is reported and left for an operator;
    it is never retried automatically.
    """

    def __init__(self, backup_service, config_store, validation_service, root: str, logger):
        self.backup_service = backup_service
        self.config_store = config_store
        self.validation_service = validation_service
        self.root = root
        self.logger = logger

    def rollback(self, tier: str, manifest: Optional[Dict[str, Any]] = None) -> RollbackResult:
        backup = self.backup_service.latest_backup(tier)
        if backup is None:
            raise NoBackupAvailableError(actionable_error("no_backup_available", tier=tier))
        return self.restore(backup, manifest)

    def restore(self, backup: Backup, manifest: Optional[Dict[str, Any]] = None) -> RollbackResult:
        self.logger.warning("Rolling back to tier %s from backup %s", backup.tier, backup.backup_id)
        result = RollbackResult(restored=False, backup_id=backup.backup_id)

        for relpath in backup.entries:
            try:
                if backup.is_absent(relpath):
                    self._remove(relpath)
                else:
                    write_bytes_atomic(
                        self._abspath(relpath),
                        self.backup_service.read_file(backup, relpath),
                        mode=backup.modes.get(relpath),
                    )
                    self.logger.debug("Restored %s", relpath)
            except OSError as exc:
                result.errors.append(f"Could not restore {relpath}: {exc}")

        for relpath, change in self._manifest_files(backup, manifest).items():
            if relpath in backup.entries:
                continue
            if change == "created":
                try:
                    self._remove(relpath)
                except OSError as exc:
                    result.errors.append(f"Could not remove {relpath}: {exc}")
            else:
                result.errors.append(f"{relpath} was {change} but is not covered by the backup")

        try:
            if backup.document is not None:
                self.config_store.save(backup.document)
            else:
                self.config_store.clear()
        except MigratorError as exc:
            result.errors.append(str(exc))

        check = self.validation_service.check_restored(backup)
        result.checks.append(check)
        result.restored = not result.errors and check.passed

        if result.restored:
            self.logger.info("Rollback to %s completed.", backup.tier)
        else:
            if not check.passed:
                result.errors.append(check.message)
            self.logger.critical(
                actionable_error(
                    "restore_check_failed", tier=backup.tier, backup_id=backup.backup_id
                )
            )
        return result

    def _manifest_files(
        self,
        backup: Backup,
        manifest: Optional[Dict[str, Any]],
    ) -> Dict[str, str]:
        if not manifest:
            return {}
        if manifest.get("backup_id") != backup.backup_id:
            self.logger.debug(
                "Manifest belongs to backup %s, not %s; ignoring it.",
                manifest.get("backup_id"),
                backup.backup_id,
            )
            return {}
        files = manifest.get("files")
        return files if isinstance(files, dict) else {}

    def _remove(self, relpath: str):
        path = self._abspath(relpath)
        if os.path.exists(path):
            os.remove(path)
            self.logger.debug("Removed %s", relpath)

    def _abspath(self, relpath: str) -> str:
        return os.path.join(self.root, *relpath.split("/"))
