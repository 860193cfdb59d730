"""Migration step execution for FoundationMigrator."""

import json
import os
from datetime import datetime, timezone
from typing import Any, Callable, List, NamedTuple, Tuple

from foundationmigrator.errors import MigratorError
from foundationmigrator.models import (
    DependencyAction,
    MigrationPlan,
    ServiceAction,
    ServiceState,
    StepResult,
    TransactionRecord,
)
from foundationmigrator.services.filesystem import write_json_atomic


class StepApplier:
    """Applies single migration steps to the installation's artifact files."""

    def __init__(self, layout, logger):
        self.layout = layout
        self.logger = logger

    def install_dependency(self, dependency: str):
        installed = self._read_list(self.layout.dependencies_file)
        if dependency not in installed:
            installed.append(dependency)
        self._write(self.layout.dependencies_file, installed)

    def remove_dependency(self, dependency: str):
        installed = self._read_list(self.layout.dependencies_file)
        self._write(
            self.layout.dependencies_file,
            [item for item in installed if item != dependency],
        )

    def enable_service(self, service: str, state: ServiceState):
        self._write_service(service, state)

    def update_service(self, service: str, state: ServiceState):
        self._write_service(service, state)

    def disable_service(self, service: str):
        path = self.layout.abspath(self.layout.service_file(service))
        if os.path.exists(path):
            os.remove(path)
        self._set_registered(service, False)

    def apply_resource(self, name: str, value: float):
        resources = self._read_mapping(self.layout.resources_file)
        resources[name] = value
        self._write(self.layout.resources_file, resources)

    def remove_artifact(self, relpath: str):
        path = self.layout.abspath(relpath)
        if os.path.exists(path):
            os.remove(path)
            self.logger.debug("Removed %s", relpath)

    def _write_service(self, service: str, state: ServiceState):
        self._write(
            self.layout.service_file(service),
            {"name": service, "enabled": state.enabled, "parameters": state.parameters},
        )
        self._set_registered(service, state.enabled)

    def _set_registered(self, service: str, registered: bool):
        registry = [item for item in self._read_list(self.layout.registry_file) if item != service]
        if registered:
            registry.append(service)
        self._write(self.layout.registry_file, registry)

    def _read(self, relpath: str, default: Any) -> Any:
        path = self.layout.abspath(relpath)
        if not os.path.exists(path):
            return default
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                return json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise MigratorError(f"Could not read artifact '{relpath}': {exc}") from exc

    def _read_list(self, relpath: str) -> List[str]:
        data = self._read(relpath, [])
        if not isinstance(data, list):
            raise MigratorError(f"Artifact '{relpath}' must contain a JSON list.")
        return data

    def _read_mapping(self, relpath: str) -> dict:
        data = self._read(relpath, {})
        if not isinstance(data, dict):
            raise MigratorError(f"Artifact '{relpath}' must contain a JSON object.")
        return data

    def _write(self, relpath: str, data: Any):
        write_json_atomic(self.layout.abspath(relpath), data, prefix="artifact-")
        self.logger.debug("Wrote %s", relpath)


class PlannedStep(NamedTuple):
    name: str
    kind: str
    target: str
    paths: Tuple[str, ...]
    deletes: Tuple[str, ...]
    callback: Callable
    args: tuple


class TransactionExecutor:
    """Applies a plan step by step and records every outcome.

    Steps never abort the run: a failing step is recorded and the next one is
    attempted, so validation sees the real post-migration state.
    """

    def __init__(self, applier: StepApplier, layout, manifest_service, logger):
        self.applier = applier
        self.layout = layout
        self.manifest_service = manifest_service
        self.logger = logger

    def planned_steps(self, plan: MigrationPlan) -> List[PlannedStep]:
        layout = self.layout
        applier = self.applier
        deps_file = (layout.dependencies_file,)
        steps: List[PlannedStep] = []

        for change in plan.dependency_changes:
            if change.action == DependencyAction.INSTALL:
                steps.append(
                    PlannedStep(
                        f"install_dependency:{change.dependency}",
                        "dependency",
                        change.dependency,
                        deps_file,
                        (),
                        applier.install_dependency,
                        (change.dependency,),
                    )
                )
        for change in plan.dependency_changes:
            if change.action == DependencyAction.REMOVE:
                steps.append(
                    PlannedStep(
                        f"remove_dependency:{change.dependency}",
                        "dependency",
                        change.dependency,
                        deps_file,
                        (),
                        applier.remove_dependency,
                        (change.dependency,),
                    )
                )

        for change in plan.service_changes:
            service_paths = (layout.service_file(change.service), layout.registry_file)
            if change.action == ServiceAction.DISABLE:
                callback, args, deletes = (
                    applier.disable_service,
                    (change.service,),
                    (layout.service_file(change.service),),
                )
            elif change.action == ServiceAction.ENABLE:
                callback, args, deletes = applier.enable_service, (change.service, change.payload), ()
            else:
                callback, args, deletes = applier.update_service, (change.service, change.payload), ()
            steps.append(
                PlannedStep(
                    f"{change.action.value}_service:{change.service}",
                    "service",
                    change.service,
                    service_paths,
                    deletes,
                    callback,
                    args,
                )
            )

        for name, change in plan.resource_changes.items():
            steps.append(
                PlannedStep(
                    f"scale_resource:{name}",
                    "resource",
                    name,
                    (layout.resources_file,),
                    (),
                    applier.apply_resource,
                    (name, change.to_value),
                )
            )

        return steps

    def execute(self, plan: MigrationPlan, record: TransactionRecord) -> TransactionRecord:
        steps = self.planned_steps(plan)
        self.logger.info("Executing %s migration steps...", len(steps))

        for step in steps:
            self._run_step(record, step)

        failed = len(record.failed_steps)
        if failed:
            self.logger.warning("%s of %s steps failed.", failed, len(steps))
        else:
            self.logger.info("All migration steps applied.")
        return record

    def remove_artifacts(self, paths: List[str], record: TransactionRecord) -> TransactionRecord:
        """Deletes managed artifacts, one recorded step per existing path."""
        steps = [
            PlannedStep(
                f"remove_artifact:{relpath}",
                "artifact",
                relpath,
                (relpath,),
                (relpath,),
                self.applier.remove_artifact,
                (relpath,),
            )
            for relpath in paths
            if os.path.exists(self.layout.abspath(relpath))
        ]
        self.logger.info("Removing %s managed artifacts...", len(steps))
        for step in steps:
            self._run_step(record, step)
        return record

    def _run_step(self, record: TransactionRecord, step: PlannedStep):
        for relpath in step.paths:
            self.manifest_service.record_file(relpath, self._change_kind(relpath, step.deletes))

        result = StepResult(
            name=step.name,
            kind=step.kind,
            target=step.target,
            started_at=self._now(),
        )
        record.steps.append(result)
        self.logger.info("Applying %s", step.name)

        try:
            step.callback(*step.args)
        except Exception as exc:
            result.status = "failed"
            result.error = str(exc)
            self.logger.error("Step %s failed: %s", step.name, exc)
        else:
            result.status = "success"
        result.finished_at = self._now()

    def _change_kind(self, relpath: str, deletes: Tuple[str, ...]) -> str:
        if not os.path.exists(self.layout.abspath(relpath)):
            return "created"
        return "deleted" if relpath in deletes else "modified"

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat(timespec="microseconds")
