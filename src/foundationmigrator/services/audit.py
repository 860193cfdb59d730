"""Transaction audit log persistence."""

import json
import os
from typing import Any, Dict, List, Optional

from foundationmigrator.errors import MigratorError
from foundationmigrator.models import TransactionRecord
from foundationmigrator.services.filesystem import write_json_atomic


class TransactionLogService:
    """Persists one JSON audit artifact per migration attempt."""

    def __init__(self, transactions_dir: str, logger):
        self.transactions_dir = transactions_dir
        self.logger = logger

    def path_for(self, transaction_id: str) -> str:
        return os.path.join(self.transactions_dir, f"{transaction_id}.json")

    def save(self, record: TransactionRecord) -> Optional[str]:
        path = self.path_for(record.transaction_id)
        try:
            write_json_atomic(path, record.to_dict(), prefix="transaction-")
        except OSError as exc:
            self.logger.warning("Could not write transaction log '%s': %s", path, exc)
            return None
        return path

    def load(self, transaction_id: str) -> Dict[str, Any]:
        path = self.path_for(transaction_id)
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise MigratorError(f"Could not read transaction log '{path}': {exc}") from exc

        if not isinstance(data, dict):
            raise MigratorError(f"Transaction log '{path}' has invalid format.")
        return data

    def list_ids(self) -> List[str]:
        if not os.path.isdir(self.transactions_dir):
            return []
        return sorted(
            name[: -len(".json")]
            for name in os.listdir(self.transactions_dir)
            if name.endswith(".json")
        )
