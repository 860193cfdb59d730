"""Post-migration validation for FoundationMigrator."""

import json
import os
from typing import List, Optional

import requests

from foundationmigrator.constants import DEFAULT_HEALTH_TIMEOUT
from foundationmigrator.models import (
    Backup,
    CheckResult,
    DependencyAction,
    MigrationDirection,
    MigrationPlan,
    ServiceAction,
    TransactionRecord,
    ValidationResult,
)


class ValidationService:
    """Inspects the installation after a migration and reports per-check results."""

    def __init__(
        self,
        layout,
        logger,
        requests_module=requests,
        health_url: Optional[str] = None,
        health_timeout: float = DEFAULT_HEALTH_TIMEOUT,
    ):
        self.layout = layout
        self.logger = logger
        self.requests = requests_module
        self.health_url = health_url
        self.health_timeout = health_timeout

    def validate(self, tier: str, record: TransactionRecord) -> ValidationResult:
        plan = record.plan or MigrationPlan(
            source_tier=None, target_tier=tier, direction=MigrationDirection.LATERAL
        )
        self.logger.info("Validating migration to %s...", tier)

        result = ValidationResult(
            checks=[
                self.check_artifacts_exist(plan),
                self.check_artifacts_well_formed(plan),
                self.check_integration(plan),
                self.check_runtime_health(plan),
            ]
        )
        for check in result.checks:
            if check.skipped:
                self.logger.info("Check %s skipped: %s", check.name, check.message)
            elif check.passed:
                self.logger.info("Check %s passed", check.name)
            else:
                self.logger.error("Check %s failed: %s", check.name, check.message)
        return result

    def check_artifacts_exist(self, plan: MigrationPlan) -> CheckResult:
        missing = [path for path in self.layout.expected_paths(plan) if not self._exists(path)]
        lingering = [path for path in self.layout.removed_paths(plan) if self._exists(path)]

        problems = []
        if missing:
            problems.append(f"missing: {', '.join(missing)}")
        if lingering:
            problems.append(f"should have been removed: {', '.join(lingering)}")
        if problems:
            return CheckResult("artifacts_exist", False, "; ".join(problems))
        return CheckResult(
            "artifacts_exist",
            True,
            f"{len(self.layout.expected_paths(plan))} expected artifacts present.",
        )

    def check_artifacts_well_formed(self, plan: MigrationPlan) -> CheckResult:
        invalid = []
        stale = []
        checked = 0
        for relpath in self.layout.expected_paths(plan):
            if not self._exists(relpath):
                continue
            checked += 1
            try:
                data = self._load(relpath)
            except (OSError, ValueError) as exc:
                invalid.append(f"{relpath} ({exc})")
                continue
            problem = self._content_problem(relpath, data, plan)
            if problem:
                stale.append(f"{relpath} ({problem})")

        problems = []
        if invalid:
            problems.append(f"Unparseable: {', '.join(invalid)}")
        if stale:
            problems.append(f"Not matching the plan: {', '.join(stale)}")
        if problems:
            return CheckResult("artifacts_well_formed", False, "; ".join(problems))
        return CheckResult("artifacts_well_formed", True, f"{checked} artifacts parsed.")

    def check_integration(self, plan: MigrationPlan) -> CheckResult:
        if not plan.service_changes:
            return CheckResult("integration_consistent", True, "No service registrations touched.")

        try:
            registry = self._load(self.layout.registry_file)
        except (OSError, ValueError) as exc:
            return CheckResult(
                "integration_consistent", False, f"Service registry unreadable: {exc}"
            )
        if not isinstance(registry, list):
            return CheckResult(
                "integration_consistent", False, "Service registry must be a JSON list."
            )

        problems: List[str] = []
        for change in plan.service_changes:
            should_register = (
                change.action != ServiceAction.DISABLE
                and change.payload is not None
                and change.payload.enabled
            )
            if should_register and change.service not in registry:
                problems.append(f"{change.service} is not registered")
            if not should_register and change.service in registry:
                problems.append(f"{change.service} is still registered")

        for service in registry:
            if not self._exists(self.layout.service_file(service)):
                problems.append(f"registered service {service} has no configuration file")

        if problems:
            return CheckResult("integration_consistent", False, "; ".join(problems))
        return CheckResult(
            "integration_consistent", True, f"{len(registry)} registered services consistent."
        )

    def check_runtime_health(self, plan: MigrationPlan) -> CheckResult:
        urls = self._health_urls(plan)
        if not urls:
            return CheckResult(
                "runtime_health", True, "No runtime health endpoint configured.", skipped=True
            )

        failures = []
        unreachable = []
        healthy = []
        for label, url in urls:
            try:
                response = self.requests.get(url, timeout=self.health_timeout)
            except self.requests.Timeout:
                failures.append(f"{label} did not respond within {self.health_timeout:g}s")
                continue
            except self.requests.ConnectionError:
                unreachable.append(label)
                continue
            except self.requests.RequestException as exc:
                failures.append(f"{label} health check error: {exc}")
                continue

            status_code = response.status_code
            response.close()
            if status_code >= 400:
                failures.append(f"{label} responded with HTTP {status_code}")
            else:
                healthy.append(label)

        if failures:
            return CheckResult("runtime_health", False, "; ".join(failures))
        if not healthy:
            return CheckResult(
                "runtime_health",
                True,
                f"No runtime reachable ({', '.join(unreachable)}).",
                skipped=True,
            )

        message = f"Healthy: {', '.join(healthy)}."
        if unreachable:
            message = f"{message} Unreachable: {', '.join(unreachable)}."
        return CheckResult("runtime_health", True, message)

    def check_restored(self, backup: Backup) -> CheckResult:
        problems = []
        for relpath, state in backup.entries.items():
            exists = self._exists(relpath)
            if state == "present" and not exists:
                problems.append(f"{relpath} was not restored")
            elif state == "absent" and exists:
                problems.append(f"{relpath} should not exist")

        if problems:
            return CheckResult("restored_artifacts", False, "; ".join(problems))
        return CheckResult(
            "restored_artifacts", True, f"{len(backup.entries)} backed-up paths verified."
        )

    def check_removed(self, paths: List[str]) -> CheckResult:
        leftover = [relpath for relpath in paths if self._exists(relpath)]
        if leftover:
            return CheckResult("artifacts_removed", False, f"Still present: {', '.join(leftover)}")
        return CheckResult("artifacts_removed", True, f"{len(paths)} managed paths removed.")

    def _health_urls(self, plan: MigrationPlan):
        urls = []
        if self.health_url:
            urls.append(("runtime", self.health_url))
        for change in plan.service_changes:
            if change.action == ServiceAction.DISABLE or change.payload is None:
                continue
            if not change.payload.enabled:
                continue
            url = change.payload.parameters.get("health_url")
            if isinstance(url, str) and url:
                urls.append((change.service, url))
        return urls

    def _content_problem(self, relpath: str, data, plan: MigrationPlan) -> Optional[str]:
        layout = self.layout
        if relpath == layout.dependencies_file:
            if not isinstance(data, list):
                return "expected a JSON list"
            missing = [
                change.dependency
                for change in plan.dependency_changes
                if change.action == DependencyAction.INSTALL and change.dependency not in data
            ]
            leftover = [
                change.dependency
                for change in plan.dependency_changes
                if change.action == DependencyAction.REMOVE and change.dependency in data
            ]
            if missing or leftover:
                return f"installed={', '.join(missing) or '-'} removed={', '.join(leftover) or '-'}"
            return None

        if relpath == layout.resources_file:
            if not isinstance(data, dict):
                return "expected a JSON object"
            wrong = [
                name
                for name, change in plan.resource_changes.items()
                if data.get(name) != change.to_value
            ]
            return f"unexpected values for {', '.join(wrong)}" if wrong else None

        for change in plan.service_changes:
            if change.payload is None or relpath != layout.service_file(change.service):
                continue
            if not isinstance(data, dict):
                return "expected a JSON object"
            if (
                data.get("enabled") != change.payload.enabled
                or data.get("parameters") != change.payload.parameters
            ):
                return f"{change.service} does not carry the planned settings"
        return None

    def _exists(self, relpath: str) -> bool:
        return os.path.isfile(self.layout.abspath(relpath))

    def _load(self, relpath: str):
        with open(self.layout.abspath(relpath), "r", encoding="utf-8") as file_obj:
            return json.load(file_obj)
