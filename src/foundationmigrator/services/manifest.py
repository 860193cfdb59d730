"""Migration manifest service: which paths the latest migration touched."""

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from foundationmigrator.services.filesystem import write_json_atomic


class ManifestService:
    """Collects the paths a migration creates, modifies or deletes."""

    def __init__(self, manifest_file: str, logger):
        self.manifest_file = manifest_file
        self.logger = logger
        self.manifest: Dict[str, Any] = self._blank()

    @staticmethod
    def _blank() -> Dict[str, Any]:
        return {
            "transaction_id": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "tiers": {
                "source": None,
                "target": None,
            },
            "backup_id": None,
            "files": {},
            "error": None,
        }

    def start(self, transaction_id: str, source_tier: Optional[str], target_tier: str):
        self.manifest = self._blank()
        self.manifest["transaction_id"] = transaction_id
        self.manifest["started_at"] = self._now()
        self.manifest["tiers"]["source"] = source_tier
        self.manifest["tiers"]["target"] = target_tier
        self.write()

    def set_backup(self, backup_id: str):
        self.manifest["backup_id"] = backup_id
        self.write()

    def record_file(self, relpath: str, change: str):
        # The first change seen for a path describes its pre-migration state.
        files = self.manifest["files"]
        if relpath not in files:
            files[relpath] = change
            self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        self.manifest["status"] = status
        self.manifest["finished_at"] = self._now()
        if self.manifest.get("started_at"):
            started_at = datetime.fromisoformat(self.manifest["started_at"])
            finished_at = datetime.fromisoformat(self.manifest["finished_at"])
            self.manifest["duration_seconds"] = (finished_at - started_at).total_seconds()
        self.manifest["error"] = error
        self.write()

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.manifest_file):
            return None
        try:
            with open(self.manifest_file, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.warning("Could not read manifest file '%s': %s", self.manifest_file, exc)
            return None
        return data if isinstance(data, dict) else None

    def write(self):
        try:
            write_json_atomic(self.manifest_file, self.manifest, prefix="manifest-")
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat(timespec="microseconds")
