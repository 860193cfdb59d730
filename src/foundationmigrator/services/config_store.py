"""Configuration document persistence for FoundationMigrator."""

import json
import os
import re
from contextlib import contextmanager
from datetime import datetime, timezone
from numbers import Number
from typing import Any, Dict, Iterator, List, Optional

import yaml
from packaging.version import InvalidVersion, Version

from foundationmigrator.constants import (
    CAPACITY_TIERS,
    CURRENT_DOCUMENT_FILE,
    LOCK_FILE,
    MARKER_FILE,
    REQUIRED_SECTIONS,
    SUPPORTED_SCHEMA_MAJOR,
    TIER_DOCUMENT_EXTENSIONS,
)
from foundationmigrator.errors import (
    MigrationInProgressError,
    NotFoundError,
    NotInstalledError,
    ParseError,
    PersistenceError,
)
from foundationmigrator.errors_catalog import actionable_error
from foundationmigrator.models import ConfigurationDocument, ServiceState
from foundationmigrator.services.filesystem import write_json_atomic

SERVICE_NAME_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")


def parse_document(data: Any, expected_tier: Optional[str], source: str) -> ConfigurationDocument:
    """Builds a document from raw data, rejecting anything structurally invalid."""
    if not isinstance(data, dict):
        raise ParseError(f"Configuration '{source}' must contain a mapping at the root.")

    missing = [section for section in REQUIRED_SECTIONS if data.get(section) is None]
    if missing:
        raise ParseError(
            f"Configuration '{source}' is missing required sections: {', '.join(missing)}"
        )

    metadata = data["metadata"]
    if not isinstance(metadata, dict):
        raise ParseError(f"Configuration '{source}' has invalid 'metadata' section.")

    tier = metadata.get("tier")
    if not isinstance(tier, str) or not tier:
        raise ParseError(f"Configuration '{source}' must define 'metadata.tier'.")
    if expected_tier is not None and tier != expected_tier:
        raise ParseError(
            f"Capacity tier mismatch in '{source}': stored as {expected_tier} "
            f"but metadata.tier says {tier}."
        )

    _validate_schema_version(metadata.get("schema_version"), source)

    resources = data["resources"]
    if not isinstance(resources, dict):
        raise ParseError(f"Configuration '{source}' has invalid 'resources' section.")
    for name, value in resources.items():
        if isinstance(value, bool) or not isinstance(value, Number):
            raise ParseError(
                f"Resource '{name}' in '{source}' must be numeric, got {value!r}."
            )

    raw_services = data["services"]
    if not isinstance(raw_services, dict):
        raise ParseError(f"Configuration '{source}' has invalid 'services' section.")
    services: Dict[str, ServiceState] = {}
    for name, entry in raw_services.items():
        services[name] = _parse_service(name, entry, source)

    raw_dependencies = data["dependencies"]
    if not isinstance(raw_dependencies, list) or not all(
        isinstance(dep, str) and dep.strip() for dep in raw_dependencies
    ):
        raise ParseError(
            f"Configuration '{source}' has invalid 'dependencies'. It must be a list of names."
        )
    dependencies: List[str] = []
    for dep in raw_dependencies:
        if dep not in dependencies:
            dependencies.append(dep)

    return ConfigurationDocument(
        tier=tier,
        resources=dict(resources),
        services=services,
        dependencies=dependencies,
        metadata=dict(metadata),
    )


def _parse_service(name: str, entry: Any, source: str) -> ServiceState:
    # Service names become file names under the installation root.
    if not SERVICE_NAME_PATTERN.fullmatch(name) or name == "registry":
        raise ParseError(f"Invalid service name '{name}' in '{source}'.")

    # Shorthand: `cache: true` / `cache: false`.
    if isinstance(entry, bool):
        return ServiceState(enabled=entry)
    if not isinstance(entry, dict):
        raise ParseError(f"Service '{name}' in '{source}' must be a mapping or a boolean.")

    enabled = entry.get("enabled", True)
    parameters = entry.get("parameters", {})
    if not isinstance(enabled, bool):
        raise ParseError(f"Service '{name}' in '{source}' has invalid 'enabled' flag.")
    if not isinstance(parameters, dict):
        raise ParseError(f"Service '{name}' in '{source}' has invalid 'parameters'.")
    return ServiceState(enabled=enabled, parameters=dict(parameters))


def _validate_schema_version(raw_version: Any, source: str):
    if raw_version is None:
        return
    try:
        parsed = Version(str(raw_version))
    except InvalidVersion as exc:
        raise ParseError(
            f"Configuration '{source}' has invalid schema_version '{raw_version}'."
        ) from exc
    if parsed.major != SUPPORTED_SCHEMA_MAJOR:
        raise ParseError(
            f"Configuration '{source}' uses unsupported schema_version {raw_version}. "
            f"Supported major version: {SUPPORTED_SCHEMA_MAJOR}."
        )


class ConfigurationStore:
    """Loads tier templates and owns the persisted current document."""

    def __init__(self, tiers_dir: str, state_dir: str, root: str, logger):
        self.tiers_dir = tiers_dir
        self.state_dir = state_dir
        self.root = root
        self.logger = logger
        self.current_file = os.path.join(state_dir, CURRENT_DOCUMENT_FILE)
        self.marker_file = os.path.join(root, MARKER_FILE)
        self.lock_file = os.path.join(state_dir, LOCK_FILE)

    def _template_path(self, tier: str) -> Optional[str]:
        for extension in TIER_DOCUMENT_EXTENSIONS:
            candidate = os.path.join(self.tiers_dir, f"{tier}{extension}")
            if os.path.isfile(candidate):
                return candidate
        return None

    def available_tiers(self) -> List[str]:
        return [tier for tier in CAPACITY_TIERS if self._template_path(tier)]

    def load(self, tier: str) -> ConfigurationDocument:
        path = self._template_path(tier)
        if path is None:
            expected = os.path.join(self.tiers_dir, f"{tier}.json")
            raise NotFoundError(actionable_error("tier_not_found", tier=tier, path=expected))

        self.logger.debug("Loading tier configuration: %s", path)
        return parse_document(self._read(path), expected_tier=tier, source=path)

    def is_installed(self) -> bool:
        return os.path.exists(self.marker_file) and os.path.exists(self.current_file)

    def load_current(self) -> ConfigurationDocument:
        if not self.is_installed():
            raise NotInstalledError(actionable_error("not_installed", root=self.root))

        marker = self._read(self.marker_file)
        expected_tier = marker.get("tier") if isinstance(marker, dict) else None
        return parse_document(
            self._read(self.current_file),
            expected_tier=expected_tier,
            source=self.current_file,
        )

    def save(self, document: ConfigurationDocument):
        marker = {"tier": document.tier, "updated_at": self._now()}
        try:
            previous = self._read(self.marker_file) if os.path.exists(self.marker_file) else {}
        except ParseError:
            previous = {}
        marker["installed_at"] = (
            previous.get("installed_at") if isinstance(previous, dict) else None
        ) or marker["updated_at"]

        try:
            write_json_atomic(self.current_file, document.to_dict(), prefix="current-")
            write_json_atomic(self.marker_file, marker, prefix="marker-")
        except OSError as exc:
            raise PersistenceError(
                f"Could not write configuration '{self.current_file}': {exc}"
            ) from exc
        self.logger.info("Current configuration set to tier %s", document.tier)

    def clear(self):
        """Returns the installation to the not-installed state."""
        for path in (self.marker_file, self.current_file):
            try:
                if os.path.exists(path):
                    os.remove(path)
            except OSError as exc:
                raise PersistenceError(f"Could not remove '{path}': {exc}") from exc
        self.logger.info("Installation marker removed from %s", self.root)

    @contextmanager
    def lock(self) -> Iterator[None]:
        try:
            os.makedirs(self.state_dir, exist_ok=True)
            fd = os.open(self.lock_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError as exc:
            raise MigrationInProgressError(
                actionable_error("migration_in_progress", path=self.lock_file)
            ) from exc
        except OSError as exc:
            raise PersistenceError(f"Could not create lock file '{self.lock_file}': {exc}") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump({"pid": os.getpid(), "acquired_at": self._now()}, file_obj)
            self.logger.debug("Acquired migration lock: %s", self.lock_file)
            yield
        finally:
            try:
                os.remove(self.lock_file)
            except OSError as exc:
                self.logger.warning("Could not release lock file %s: %s", self.lock_file, exc)

    def _read(self, path: str) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                if path.endswith((".yml", ".yaml")):
                    return yaml.safe_load(file_obj)
                return json.load(file_obj)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ParseError(f"Could not parse '{path}': {exc}") from exc
        except OSError as exc:
            raise ParseError(f"Could not read '{path}': {exc}") from exc

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat(timespec="microseconds")
