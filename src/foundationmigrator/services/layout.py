"""Locations of the artifacts a migration manages inside an installation."""

import os
from typing import List, Optional

from foundationmigrator.constants import (
    ARTIFACTS_DIRNAME,
    DEPENDENCIES_FILE,
    REGISTRY_FILE,
    RESOURCES_FILE,
    SERVICES_DIRNAME,
)
from foundationmigrator.models import ConfigurationDocument, MigrationPlan, ServiceAction


class ArtifactLayout:
    """Maps plan changes to installation-relative artifact paths."""

    def __init__(self, root: str):
        self.root = root

    @property
    def dependencies_file(self) -> str:
        return f"{ARTIFACTS_DIRNAME}/{DEPENDENCIES_FILE}"

    @property
    def resources_file(self) -> str:
        return f"{ARTIFACTS_DIRNAME}/{RESOURCES_FILE}"

    @property
    def registry_file(self) -> str:
        return f"{ARTIFACTS_DIRNAME}/{SERVICES_DIRNAME}/{REGISTRY_FILE}"

    def service_file(self, service: str) -> str:
        return f"{ARTIFACTS_DIRNAME}/{SERVICES_DIRNAME}/{service}.json"

    def abspath(self, relpath: str) -> str:
        return os.path.join(self.root, *relpath.split("/"))

    def touched_paths(self, plan: MigrationPlan) -> List[str]:
        """Every path the plan may create, modify or delete."""
        paths: List[str] = []
        if plan.dependency_changes:
            paths.append(self.dependencies_file)
        for change in plan.service_changes:
            paths.append(self.service_file(change.service))
        if plan.service_changes:
            paths.append(self.registry_file)
        if plan.resource_changes:
            paths.append(self.resources_file)
        return _unique(paths)

    def expected_paths(self, plan: MigrationPlan) -> List[str]:
        """Paths that must exist once the plan has been applied."""
        removed = {
            self.service_file(change.service)
            for change in plan.service_changes
            if change.action == ServiceAction.DISABLE
        }
        return [path for path in self.touched_paths(plan) if path not in removed]

    def removed_paths(self, plan: MigrationPlan) -> List[str]:
        return [
            self.service_file(change.service)
            for change in plan.service_changes
            if change.action == ServiceAction.DISABLE
        ]

    def installed_paths(self, document: Optional[ConfigurationDocument] = None) -> List[str]:
        """Every managed artifact of an installation, whether present or not.

        Service files left on disk by services the document no longer lists
        are included.
        """
        paths = [self.dependencies_file, self.resources_file, self.registry_file]
        if document is not None:
            paths.extend(self.service_file(service) for service in document.services)

        services_dir = self.abspath(f"{ARTIFACTS_DIRNAME}/{SERVICES_DIRNAME}")
        if os.path.isdir(services_dir):
            for name in sorted(os.listdir(services_dir)):
                if name.endswith(".json") and name != REGISTRY_FILE:
                    paths.append(self.service_file(name[: -len(".json")]))
        return _unique(paths)


def _unique(paths: List[str]) -> List[str]:
    seen = set()
    ordered = []
    for path in paths:
        if path not in seen:
            seen.add(path)
            ordered.append(path)
    return ordered
