"""Shared domain models for FoundationMigrator."""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .constants import CAPACITY_TIERS


class CapacityTier(str, Enum):
    """Ordered capacity levels, lowest first."""

    NANO = "nano"
    MICRO = "micro"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return CAPACITY_TIERS.index(self.value)

    @classmethod
    def parse(cls, name: str) -> "CapacityTier":
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid capacity tier '{name}'. Supported tiers: {', '.join(CAPACITY_TIERS)}"
            ) from None

    def __lt__(self, other):
        if not isinstance(other, CapacityTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, CapacityTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, CapacityTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, CapacityTier):
            return NotImplemented
        return self.rank >= other.rank


class ChangeDirection(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


class ServiceAction(str, Enum):
    ENABLE = "enable"
    UPDATE = "update"
    DISABLE = "disable"


class DependencyAction(str, Enum):
    INSTALL = "install"
    REMOVE = "remove"


class MigrationDirection(str, Enum):
    INSTALL = "install"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    LATERAL = "lateral"


class TransactionStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ROLLED_BACK = "rolled_back"
    FAILED_UNRECOVERABLE = "failed_unrecoverable"
    FAILED = "failed"


@dataclass(frozen=True)
class MigratorSettings:
    """Resolved paths and flags for one migrator instance."""

    root: str
    tiers_dir: str
    state_dir: str
    backups_dir: str
    health_url: Optional[str] = None
    health_timeout: float = 5.0
    allow_downgrade: bool = False
    disable_removed_services: bool = False
    keep_backups: Optional[int] = None


@dataclass
class ServiceState:
    enabled: bool = True
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "parameters": copy.deepcopy(self.parameters)}


@dataclass
class ConfigurationDocument:
    """A capacity tier configuration.

    ``resources`` and ``services`` are optional only so that a corrupt target
    can be represented and rejected at plan time; documents loaded from disk
    always carry every section.
    """

    tier: Optional[str]
    resources: Optional[Dict[str, float]] = field(default_factory=dict)
    services: Optional[Dict[str, ServiceState]] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "ConfigurationDocument":
        return cls(tier=None)

    def copy(self) -> "ConfigurationDocument":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": copy.deepcopy(self.metadata),
            "resources": dict(self.resources or {}),
            "services": {
                name: state.to_dict() for name, state in (self.services or {}).items()
            },
            "dependencies": list(self.dependencies),
        }


@dataclass(frozen=True)
class ResourceChange:
    name: str
    from_value: float
    to_value: float
    direction: ChangeDirection

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_value,
            "to": self.to_value,
            "direction": self.direction.value,
        }


@dataclass(frozen=True)
class ServiceChange:
    action: ServiceAction
    service: str
    payload: Optional[ServiceState] = None
    previous: Optional[ServiceState] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "service": self.service,
            "payload": self.payload.to_dict() if self.payload else None,
        }


@dataclass(frozen=True)
class DependencyChange:
    action: DependencyAction
    dependency: str

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action.value, "dependency": self.dependency}


@dataclass
class MigrationPlan:
    source_tier: Optional[str]
    target_tier: str
    direction: MigrationDirection
    resource_changes: Dict[str, ResourceChange] = field(default_factory=dict)
    service_changes: List[ServiceChange] = field(default_factory=list)
    dependency_changes: List[DependencyChange] = field(default_factory=list)
    estimated_downtime: str = "none"

    @property
    def is_empty(self) -> bool:
        return not (self.resource_changes or self.service_changes or self.dependency_changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_tier": self.source_tier,
            "target_tier": self.target_tier,
            "direction": self.direction.value,
            "resource_changes": {
                name: change.to_dict() for name, change in self.resource_changes.items()
            },
            "service_changes": [change.to_dict() for change in self.service_changes],
            "dependency_changes": [change.to_dict() for change in self.dependency_changes],
            "estimated_downtime": self.estimated_downtime,
        }


@dataclass(frozen=True)
class Backup:
    """Immutable pre-migration snapshot."""

    backup_id: str
    tier: str
    created_at: str
    path: str
    entries: Dict[str, str]
    document: Optional[ConfigurationDocument] = None
    modes: Dict[str, int] = field(default_factory=dict)

    def is_absent(self, relpath: str) -> bool:
        return self.entries.get(relpath) == "absent"


@dataclass
class StepResult:
    name: str
    kind: str
    target: str
    status: str = "running"
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "target": self.target,
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
        }


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    message: str
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "skipped": self.skipped,
            "message": self.message,
        }


@dataclass
class ValidationResult:
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks if not check.skipped)

    def to_dict(self) -> Dict[str, Any]:
        return {"passed": self.passed, "checks": [check.to_dict() for check in self.checks]}


@dataclass
class RollbackResult:
    restored: bool
    backup_id: Optional[str]
    errors: List[str] = field(default_factory=list)
    checks: List[CheckResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "restored": self.restored,
            "backup_id": self.backup_id,
            "errors": list(self.errors),
            "checks": [check.to_dict() for check in self.checks],
        }


@dataclass
class TransactionRecord:
    """Audit trail of one migration attempt."""

    transaction_id: str
    source_tier: Optional[str]
    target_tier: str
    started_at: str
    plan: Optional[MigrationPlan] = None
    backup_id: Optional[str] = None
    backup_created_at: Optional[str] = None
    steps: List[StepResult] = field(default_factory=list)
    validation: Optional[ValidationResult] = None
    rollback: Optional[RollbackResult] = None
    status: TransactionStatus = TransactionStatus.RUNNING
    finished_at: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed_steps(self) -> List[StepResult]:
        return [step for step in self.steps if not step.succeeded]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "source_tier": self.source_tier,
            "target_tier": self.target_tier,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "status": self.status.value,
            "error": self.error,
            "plan": self.plan.to_dict() if self.plan else None,
            "backup_id": self.backup_id,
            "backup_created_at": self.backup_created_at,
            "steps": [step.to_dict() for step in self.steps],
            "validation": self.validation.to_dict() if self.validation else None,
            "rollback": self.rollback.to_dict() if self.rollback else None,
        }
