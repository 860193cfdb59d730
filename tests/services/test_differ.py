import pytest

from foundationmigrator.errors import InvalidMigrationError
from foundationmigrator.models import (
    ChangeDirection,
    ConfigurationDocument,
    DependencyAction,
    MigrationDirection,
    ServiceAction,
    ServiceState,
)
from foundationmigrator.services.differ import ConfigurationDiffer


def _doc(tier, resources=None, services=None, dependencies=None):
    return ConfigurationDocument(
        tier=tier,
        resources=resources if resources is not None else {},
        services=services if services is not None else {},
        dependencies=dependencies or [],
        metadata={"tier": tier},
    )


def test_diff_of_identical_documents_is_empty():
    doc = _doc(
        "small",
        resources={"memory": 4},
        services={"cache": ServiceState(True, {"size": 64})},
        dependencies=["redis"],
    )

    plan = ConfigurationDiffer().diff(doc, doc.copy())

    assert plan.is_empty
    assert plan.estimated_downtime == "none"
    assert plan.direction == MigrationDirection.LATERAL


def test_diff_reports_resource_increase_and_decrease():
    source = _doc("small", resources={"memory": 4, "cpu": 4, "disk": 10})
    target = _doc("medium", resources={"memory": 8, "cpu": 2, "disk": 10, "gpu": 1})

    plan = ConfigurationDiffer().diff(source, target)

    assert set(plan.resource_changes) == {"memory", "cpu", "gpu"}
    assert plan.resource_changes["memory"].direction == ChangeDirection.INCREASE
    assert plan.resource_changes["cpu"].direction == ChangeDirection.DECREASE
    assert plan.resource_changes["gpu"].from_value == 0
    assert plan.direction == MigrationDirection.UPGRADE
    assert plan.estimated_downtime == "2-5 minutes"


def test_diff_enables_new_services_and_updates_changed_ones():
    source = _doc(
        "small",
        services={"cache": ServiceState(True, {"size": 64}), "queue": ServiceState(True)},
    )
    target = _doc(
        "medium",
        services={
            "cache": ServiceState(True, {"size": 128}),
            "queue": ServiceState(True),
            "search": ServiceState(True),
            "metrics": ServiceState(False),
        },
    )

    plan = ConfigurationDiffer().diff(source, target)

    actions = [(change.action, change.service) for change in plan.service_changes]
    assert actions == [
        (ServiceAction.UPDATE, "cache"),
        (ServiceAction.ENABLE, "search"),
    ]
    assert plan.service_changes[0].previous.parameters == {"size": 64}


def test_diff_keeps_removed_services_unless_asked_to_disable():
    source = _doc("medium", services={"cache": ServiceState(True), "search": ServiceState(True)})
    target = _doc("small", services={"cache": ServiceState(True)})
    differ = ConfigurationDiffer()

    assert differ.diff(source, target).service_changes == []

    plan = differ.diff(source, target, disable_removed_services=True)
    assert [(c.action, c.service) for c in plan.service_changes] == [
        (ServiceAction.DISABLE, "search")
    ]
    assert plan.direction == MigrationDirection.DOWNGRADE


def test_diff_orders_dependency_changes_install_first():
    source = _doc("small", dependencies=["redis", "nginx"])
    target = _doc("medium", dependencies=["postgres", "redis", "elastic"])

    plan = ConfigurationDiffer().diff(source, target)

    assert [(c.action, c.dependency) for c in plan.dependency_changes] == [
        (DependencyAction.INSTALL, "postgres"),
        (DependencyAction.INSTALL, "elastic"),
        (DependencyAction.REMOVE, "nginx"),
    ]


def test_diff_from_nothing_is_an_install_plan():
    target = _doc("nano", resources={"memory": 1}, services={"cache": ServiceState(True)})

    plan = ConfigurationDiffer().diff(None, target)

    assert plan.source_tier is None
    assert plan.direction == MigrationDirection.INSTALL
    assert plan.resource_changes["memory"].from_value == 0
    assert plan.service_changes[0].action == ServiceAction.ENABLE


def test_diff_rejects_target_without_sections():
    target = ConfigurationDocument(tier="small", resources=None, services={})

    with pytest.raises(InvalidMigrationError, match="missing its resources or services"):
        ConfigurationDiffer().diff(_doc("nano"), target)


def test_diff_is_deterministic_and_does_not_share_payloads():
    source = _doc("small", services={"cache": ServiceState(True, {"size": 64})})
    target = _doc("large", services={"cache": ServiceState(True, {"size": 512})})
    differ = ConfigurationDiffer()

    first = differ.diff(source, target)
    second = differ.diff(source, target)

    assert first.to_dict() == second.to_dict()
    first.service_changes[0].payload.parameters["size"] = 1
    assert target.services["cache"].parameters["size"] == 512


def test_unknown_tier_pair_uses_default_downtime_estimate():
    assert ConfigurationDiffer.estimate_downtime("nano", "large") == "Variable (complex upgrade)"
    assert ConfigurationDiffer.estimate_downtime("micro", "small") == "1-2 minutes"


def test_merge_keeps_untouched_source_services_and_drops_disabled_ones():
    source = _doc(
        "medium",
        resources={"memory": 8, "legacy": 1},
        services={"cache": ServiceState(True), "search": ServiceState(True), "old": ServiceState(True)},
    )
    target = _doc("small", resources={"memory": 4}, services={"cache": ServiceState(True)})
    differ = ConfigurationDiffer()
    plan = differ.diff(source, target)
    plan.service_changes = [
        change for change in differ.diff(source, target, True).service_changes
        if change.service == "old"
    ]

    merged = differ.merge(source, target, plan)

    assert merged.tier == "small"
    assert merged.resources == {"memory": 4, "legacy": 1}
    assert set(merged.services) == {"cache", "search"}
