"""Pre-migration backup service for FoundationMigrator."""

import json
import os
import shutil
import stat
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from foundationmigrator.constants import (
    BACKUP_DOCUMENT_FILE,
    BACKUP_FILE_MODE,
    BACKUP_FILES_DIRNAME,
    BACKUP_INFO_FILE,
)
from foundationmigrator.errors import BackupFailedError, MigratorError
from foundationmigrator.errors_catalog import actionable_error
from foundationmigrator.models import Backup, ConfigurationDocument
from foundationmigrator.services.config_store import parse_document
from foundationmigrator.services.filesystem import write_json_atomic


class BackupService:
    """Creates and lists immutable snapshots of installation files."""

    def __init__(self, backups_dir: str, root: str, filesystem_service, logger):
        self.backups_dir = backups_dir
        self.root = root
        self.filesystem_service = filesystem_service
        self.logger = logger

    def create_backup(
        self,
        tier: str,
        files: Iterable[str],
        document: Optional[ConfigurationDocument],
    ) -> Backup:
        created_at = datetime.now(timezone.utc)
        backup_id = f"{tier}-{created_at.strftime('%Y%m%dT%H%M%S%fZ')}-{uuid.uuid4().hex[:6]}"
        backup_path = os.path.join(self.backups_dir, backup_id)
        entries = {}
        modes = {}
        snapshot = document.copy() if document is not None else None

        self.logger.info("Creating backup %s", backup_id)
        try:
            os.makedirs(backup_path)
            for relpath in files:
                source = os.path.join(self.root, *relpath.split("/"))
                if not os.path.isfile(source):
                    entries[relpath] = "absent"
                    continue

                destination = self._stored_path(backup_path, relpath)
                os.makedirs(os.path.dirname(destination), exist_ok=True)
                shutil.copy2(source, destination)
                entries[relpath] = "present"
                modes[relpath] = stat.S_IMODE(os.stat(source).st_mode)
                self.logger.debug("Backed up %s", relpath)

            write_json_atomic(
                os.path.join(backup_path, BACKUP_DOCUMENT_FILE),
                snapshot.to_dict() if snapshot is not None else None,
                prefix="backup-doc-",
            )
            write_json_atomic(
                os.path.join(backup_path, BACKUP_INFO_FILE),
                {
                    "backup_id": backup_id,
                    "tier": tier,
                    "created_at": created_at.isoformat(timespec="microseconds"),
                    "entries": entries,
                    "modes": modes,
                },
                prefix="backup-info-",
            )
        except OSError as exc:
            self.filesystem_service.cleanup_dir(backup_path)
            raise BackupFailedError(
                actionable_error("backup_failed", tier=tier, reason=str(exc))
            ) from exc

        self.filesystem_service.set_tree_permissions(backup_path, BACKUP_FILE_MODE)
        self.logger.info("Backup created: %s", backup_path)

        return Backup(
            backup_id=backup_id,
            tier=tier,
            created_at=created_at.isoformat(timespec="microseconds"),
            path=backup_path,
            entries=dict(entries),
            document=snapshot,
            modes=dict(modes),
        )

    def list_backups(self, tier: str) -> List[Backup]:
        """Backups for ``tier``, most recent first."""
        if not os.path.isdir(self.backups_dir):
            return []

        backups = []
        for name in os.listdir(self.backups_dir):
            path = os.path.join(self.backups_dir, name)
            if not os.path.isdir(path):
                continue
            try:
                backup = self._load(path)
            except MigratorError as exc:
                self.logger.warning("Skipping unreadable backup %s: %s", path, exc)
                continue
            if backup.tier == tier:
                backups.append(backup)

        return sorted(backups, key=lambda item: (item.created_at, item.backup_id), reverse=True)

    def latest_backup(self, tier: str) -> Optional[Backup]:
        backups = self.list_backups(tier)
        return backups[0] if backups else None

    def get_backup(self, backup_id: str) -> Backup:
        path = os.path.join(self.backups_dir, backup_id)
        if os.path.basename(backup_id) != backup_id or not os.path.isdir(path):
            raise MigratorError(f"Backup not found: {backup_id}")
        return self._load(path)

    def read_file(self, backup: Backup, relpath: str) -> bytes:
        with open(self._stored_path(backup.path, relpath), "rb") as file_obj:
            return file_obj.read()

    def prune(self, tier: str, keep: int) -> List[str]:
        if keep < 0:
            raise MigratorError("Number of backups to keep cannot be negative.")

        removed = []
        for backup in self.list_backups(tier)[keep:]:
            self.filesystem_service.cleanup_dir(backup.path)
            removed.append(backup.backup_id)
            self.logger.info("Pruned backup %s", backup.backup_id)
        return removed

    def _load(self, path: str) -> Backup:
        try:
            with open(os.path.join(path, BACKUP_INFO_FILE), "r", encoding="utf-8") as file_obj:
                info = json.load(file_obj)
            with open(os.path.join(path, BACKUP_DOCUMENT_FILE), "r", encoding="utf-8") as file_obj:
                raw_document = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise MigratorError(f"Could not read backup '{path}': {exc}") from exc

        if not isinstance(info, dict) or not isinstance(info.get("entries"), dict):
            raise MigratorError(f"Backup '{path}' has invalid format.")

        modes = info.get("modes")
        if not isinstance(modes, dict):
            modes = {}

        document = None
        if raw_document is not None:
            document = parse_document(raw_document, expected_tier=None, source=path)

        return Backup(
            backup_id=info.get("backup_id") or os.path.basename(path),
            tier=info.get("tier"),
            created_at=info.get("created_at", ""),
            path=path,
            entries=dict(info["entries"]),
            document=document,
            modes=modes,
        )

    @staticmethod
    def _stored_path(backup_path: str, relpath: str) -> str:
        return os.path.join(backup_path, BACKUP_FILES_DIRNAME, *relpath.split("/"))
