"""Configuration differencing for capacity tier migrations."""

import copy
from typing import Dict, List, Optional

from foundationmigrator.constants import (
    CAPACITY_TIERS,
    DEFAULT_DOWNTIME_ESTIMATE,
    DOWNTIME_ESTIMATES,
)
from foundationmigrator.errors import InvalidMigrationError
from foundationmigrator.models import (
    ChangeDirection,
    ConfigurationDocument,
    DependencyAction,
    DependencyChange,
    MigrationDirection,
    MigrationPlan,
    ResourceChange,
    ServiceAction,
    ServiceChange,
    ServiceState,
)


class ConfigurationDiffer:
    """Computes migration plans between two configuration documents.

    Plans are additive by default: services that only exist in the source
    document stay untouched unless ``disable_removed_services`` is set.
    """

    def diff(
        self,
        from_doc: Optional[ConfigurationDocument],
        to_doc: ConfigurationDocument,
        disable_removed_services: bool = False,
    ) -> MigrationPlan:
        if to_doc.resources is None or to_doc.services is None:
            raise InvalidMigrationError(
                f"Target configuration for tier {to_doc.tier} is missing its "
                "resources or services section."
            )

        source = from_doc if from_doc is not None else ConfigurationDocument.empty()
        plan = MigrationPlan(
            source_tier=source.tier,
            target_tier=to_doc.tier,
            direction=self.direction(source.tier, to_doc.tier),
            resource_changes=self.compare_resources(source, to_doc),
            service_changes=self.compare_services(source, to_doc, disable_removed_services),
            dependency_changes=self.compare_dependencies(source, to_doc),
        )
        plan.estimated_downtime = (
            "none" if plan.is_empty else self.estimate_downtime(source.tier, to_doc.tier)
        )
        return plan

    def compare_resources(
        self,
        source: ConfigurationDocument,
        target: ConfigurationDocument,
    ) -> Dict[str, ResourceChange]:
        changes: Dict[str, ResourceChange] = {}
        current = source.resources or {}

        for name, to_value in target.resources.items():
            from_value = current.get(name, 0)
            if from_value == to_value:
                continue
            changes[name] = ResourceChange(
                name=name,
                from_value=from_value,
                to_value=to_value,
                direction=(
                    ChangeDirection.INCREASE if to_value > from_value else ChangeDirection.DECREASE
                ),
            )
        return changes

    def compare_services(
        self,
        source: ConfigurationDocument,
        target: ConfigurationDocument,
        disable_removed_services: bool = False,
    ) -> List[ServiceChange]:
        changes: List[ServiceChange] = []
        current = source.services or {}

        for name, state in target.services.items():
            previous = current.get(name)
            if previous is None:
                if state.enabled:
                    changes.append(
                        ServiceChange(ServiceAction.ENABLE, name, payload=_copy_state(state))
                    )
            elif previous != state:
                changes.append(
                    ServiceChange(
                        ServiceAction.UPDATE,
                        name,
                        payload=_copy_state(state),
                        previous=_copy_state(previous),
                    )
                )

        if disable_removed_services:
            for name, previous in current.items():
                if name not in target.services and previous.enabled:
                    changes.append(
                        ServiceChange(ServiceAction.DISABLE, name, previous=_copy_state(previous))
                    )

        return changes

    def compare_dependencies(
        self,
        source: ConfigurationDocument,
        target: ConfigurationDocument,
    ) -> List[DependencyChange]:
        current = source.dependencies or []
        wanted = target.dependencies or []

        changes = [
            DependencyChange(DependencyAction.INSTALL, dep) for dep in wanted if dep not in current
        ]
        changes.extend(
            DependencyChange(DependencyAction.REMOVE, dep) for dep in current if dep not in wanted
        )
        return changes

    def merge(
        self,
        from_doc: Optional[ConfigurationDocument],
        to_doc: ConfigurationDocument,
        plan: MigrationPlan,
    ) -> ConfigurationDocument:
        """Effective document once ``plan`` has been applied."""
        source = from_doc if from_doc is not None else ConfigurationDocument.empty()
        disabled = {
            change.service
            for change in plan.service_changes
            if change.action == ServiceAction.DISABLE
        }

        resources = dict(source.resources or {})
        resources.update(to_doc.resources or {})

        services = {name: _copy_state(state) for name, state in to_doc.services.items()}
        for name, state in (source.services or {}).items():
            if name not in services and name not in disabled:
                services[name] = _copy_state(state)

        return ConfigurationDocument(
            tier=to_doc.tier,
            resources=resources,
            services=services,
            dependencies=list(to_doc.dependencies),
            metadata=dict(to_doc.metadata),
        )

    @staticmethod
    def direction(source_tier: Optional[str], target_tier: str) -> MigrationDirection:
        if source_tier is None:
            return MigrationDirection.INSTALL
        if source_tier not in CAPACITY_TIERS or target_tier not in CAPACITY_TIERS:
            return MigrationDirection.LATERAL

        delta = CAPACITY_TIERS.index(target_tier) - CAPACITY_TIERS.index(source_tier)
        if delta > 0:
            return MigrationDirection.UPGRADE
        if delta < 0:
            return MigrationDirection.DOWNGRADE
        return MigrationDirection.LATERAL

    @staticmethod
    def estimate_downtime(source_tier: Optional[str], target_tier: str) -> str:
        return DOWNTIME_ESTIMATES.get(f"{source_tier}-{target_tier}", DEFAULT_DOWNTIME_ESTIMATE)


def _copy_state(state: ServiceState) -> ServiceState:
    return ServiceState(enabled=state.enabled, parameters=copy.deepcopy(state.parameters))
