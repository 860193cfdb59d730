import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests
from rich.console import Console

from .constants import (
    BACKUPS_DIRNAME,
    BASELINE_TIER,
    CAPACITY_TIERS,
    DEFAULT_HEALTH_TIMEOUT,
    MANIFEST_FILE,
    MAX_TIER_JUMP_WITHOUT_WARNING,
    STATE_DIRNAME,
    TIERS_DIRNAME,
    TRANSACTIONS_DIRNAME,
)
from .errors import (
    BackupFailedError,
    InvalidMigrationError,
    MigratorError,
    NoBackupAvailableError,
)
from .errors_catalog import actionable_error
from .models import (
    Backup,
    CapacityTier,
    ConfigurationDocument,
    MigrationPlan,
    MigratorSettings,
    RollbackResult,
    TransactionRecord,
    TransactionStatus,
    ValidationResult,
)
from .services.audit import TransactionLogService
from .services.backup import BackupService
from .services.config_store import ConfigurationStore
from .services.differ import ConfigurationDiffer
from .services.executor import StepApplier, TransactionExecutor
from .services.filesystem import FileSystemService
from .services.layout import ArtifactLayout
from .services.manifest import ManifestService
from .services.report import ReportRenderer
from .services.rollback import RollbackController
from .services.validation import ValidationService

console = Console()
logger = logging.getLogger("foundationmigrator")


def build_settings(
    root: Optional[str] = None,
    tiers_dir: Optional[str] = None,
    state_dir: Optional[str] = None,
    backups_dir: Optional[str] = None,
    health_url: Optional[str] = None,
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT,
    allow_downgrade: bool = False,
    disable_removed_services: bool = False,
    keep_backups: Optional[int] = None,
) -> MigratorSettings:
    root = os.path.abspath(root or os.getcwd())
    state_dir = os.path.abspath(state_dir or os.path.join(root, STATE_DIRNAME))
    return MigratorSettings(
        root=root,
        tiers_dir=os.path.abspath(tiers_dir or os.path.join(root, TIERS_DIRNAME)),
        state_dir=state_dir,
        backups_dir=os.path.abspath(backups_dir or os.path.join(state_dir, BACKUPS_DIRNAME)),
        health_url=health_url,
        health_timeout=health_timeout,
        allow_downgrade=allow_downgrade,
        disable_removed_services=disable_removed_services,
        keep_backups=keep_backups,
    )


class FoundationMigrator:
    VALID_TIERS = CAPACITY_TIERS

    def __init__(self, settings: MigratorSettings, requests_module=requests):
        self.settings = settings

        self.layout = ArtifactLayout(settings.root)
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.config_store = ConfigurationStore(
            tiers_dir=settings.tiers_dir,
            state_dir=settings.state_dir,
            root=settings.root,
            logger=logger,
        )
        self.differ = ConfigurationDiffer()
        self.backup_service = BackupService(
            backups_dir=settings.backups_dir,
            root=settings.root,
            filesystem_service=self.filesystem_service,
            logger=logger,
        )
        self.manifest_service = ManifestService(
            manifest_file=os.path.join(settings.state_dir, MANIFEST_FILE),
            logger=logger,
        )
        self.transaction_log = TransactionLogService(
            transactions_dir=os.path.join(settings.state_dir, TRANSACTIONS_DIRNAME),
            logger=logger,
        )
        self.executor = TransactionExecutor(
            applier=StepApplier(self.layout, logger),
            layout=self.layout,
            manifest_service=self.manifest_service,
            logger=logger,
        )
        self.validation_service = ValidationService(
            layout=self.layout,
            logger=logger,
            requests_module=requests_module,
            health_url=settings.health_url,
            health_timeout=settings.health_timeout,
        )
        self.rollback_controller = RollbackController(
            backup_service=self.backup_service,
            config_store=self.config_store,
            validation_service=self.validation_service,
            root=settings.root,
            logger=logger,
        )
        self.reporter = ReportRenderer(console)

    def status(self) -> Optional[ConfigurationDocument]:
        if not self.config_store.is_installed():
            return None
        return self.config_store.load_current()

    def validate_tier_path(self, current: str, target: str):
        try:
            current_tier = CapacityTier.parse(current)
            target_tier = CapacityTier.parse(target)
        except ValueError as exc:
            raise InvalidMigrationError(str(exc)) from exc

        if target_tier < current_tier and not self.settings.allow_downgrade:
            raise InvalidMigrationError(
                actionable_error("downgrade_not_allowed", current=current, target=target)
            )

        distance = abs(target_tier.rank - current_tier.rank)
        if distance > MAX_TIER_JUMP_WITHOUT_WARNING:
            skipped = distance - 1
            logger.warning(
                "Skipping %s capacity levels (%s -> %s). Consider a gradual migration.",
                skipped,
                current,
                target,
            )
            console.print(
                f"[yellow]Warning:[/yellow] Skipping {skipped} capacity levels. "
                "Consider a gradual migration."
            )

    def preview(self, current: str, target: str) -> MigrationPlan:
        """Computes the plan without touching the installation."""
        current_doc = self._load_installed(current)
        self.validate_tier_path(current, target)
        target_doc = self.config_store.load(target)
        return self.differ.diff(
            current_doc,
            target_doc,
            disable_removed_services=self.settings.disable_removed_services,
        )

    def migrate(self, current: str, target: str) -> TransactionRecord:
        with self.config_store.lock():
            current_doc = self._load_installed(current)
            self.validate_tier_path(current, target)
            target_doc = self.config_store.load(target)
            return self._transact(current_doc, target_doc, backup_tier=current)

    def install(self, tier: str) -> TransactionRecord:
        with self.config_store.lock():
            if self.config_store.is_installed():
                installed = self.config_store.load_current()
                raise InvalidMigrationError(
                    f"Foundation is already installed at tier {installed.tier}. "
                    "Use `migrate` to change capacity."
                )
            if tier not in self.VALID_TIERS:
                raise InvalidMigrationError(f"Invalid capacity tier: {tier}")

            target_doc = self.config_store.load(tier)
            return self._transact(None, target_doc, backup_tier=BASELINE_TIER)

    def uninstall(self) -> TransactionRecord:
        """Removes every managed artifact and the installation marker.

        The backup is filed under the installed tier, so ``rollback(tier)``
        brings the removed installation back.
        """
        with self.config_store.lock():
            current_doc = self.config_store.load_current()
            paths = self.layout.installed_paths(current_doc)
            record = TransactionRecord(
                transaction_id=self._new_transaction_id(),
                source_tier=current_doc.tier,
                target_tier=BASELINE_TIER,
                started_at=self._now(),
            )
            console.print(
                f"\n[bold]Uninstalling Foundation[/bold] (tier {current_doc.tier}, "
                f"{len(paths)} managed paths)"
            )
            self._start_backup(record, current_doc.tier, paths, current_doc)

            def apply() -> ValidationResult:
                self.executor.remove_artifacts(paths, record)
                return ValidationResult(checks=[self.validation_service.check_removed(paths)])

            return self._apply(record, current_doc.tier, apply, self.config_store.clear)

    def rollback(self, tier: str, backup_id: Optional[str] = None) -> RollbackResult:
        """Manually restores a backup taken before a migration away from ``tier``."""
        with self.config_store.lock():
            if backup_id:
                backup = self.backup_service.get_backup(backup_id)
            else:
                backup = self.backup_service.latest_backup(tier)
                if backup is None:
                    raise NoBackupAvailableError(
                        actionable_error("no_backup_available", tier=tier)
                    )
            return self.rollback_controller.restore(backup, self.manifest_service.load())

    def list_backups(self, tier: str) -> List[Backup]:
        return self.backup_service.list_backups(tier)

    def prune_backups(self, tier: str, keep: int) -> List[str]:
        with self.config_store.lock():
            return self.backup_service.prune(tier, keep)

    def list_transactions(self) -> List[str]:
        return self.transaction_log.list_ids()

    def load_transaction(self, transaction_id: str) -> Dict[str, Any]:
        return self.transaction_log.load(transaction_id)

    def _load_installed(self, current: str) -> ConfigurationDocument:
        current_doc = self.config_store.load_current()
        if current_doc.tier != current:
            raise InvalidMigrationError(
                actionable_error(
                    "current_tier_mismatch", installed=current_doc.tier, current=current
                )
            )
        return current_doc

    def _transact(
        self,
        source_doc: Optional[ConfigurationDocument],
        target_doc: ConfigurationDocument,
        backup_tier: str,
    ) -> TransactionRecord:
        plan = self.differ.diff(
            source_doc,
            target_doc,
            disable_removed_services=self.settings.disable_removed_services,
        )
        record = TransactionRecord(
            transaction_id=self._new_transaction_id(),
            source_tier=plan.source_tier,
            target_tier=plan.target_tier,
            started_at=self._now(),
            plan=plan,
        )
        self.reporter.render_plan(plan)

        # Only a same-tier empty plan is a no-op; other empty plans still move the tier.
        if plan.is_empty and source_doc is not None and source_doc.tier == target_doc.tier:
            logger.info("Tier %s already matches the installation. Nothing to do.", target_doc.tier)
            record.status = TransactionStatus.SUCCESS
            return self._finish(record, write_manifest=False)

        self._start_backup(record, backup_tier, self.layout.touched_paths(plan), source_doc)

        def apply() -> ValidationResult:
            self.executor.execute(plan, record)
            return self.validation_service.validate(plan.target_tier, record)

        def commit():
            self.config_store.save(self.differ.merge(source_doc, target_doc, plan))

        return self._apply(record, backup_tier, apply, commit)

    def _start_backup(
        self,
        record: TransactionRecord,
        tier: str,
        paths: List[str],
        document: Optional[ConfigurationDocument],
    ) -> Backup:
        self.manifest_service.start(record.transaction_id, record.source_tier, record.target_tier)
        try:
            backup = self.backup_service.create_backup(tier, paths, document)
        except BackupFailedError as exc:
            record.status = TransactionStatus.FAILED
            record.error = str(exc)
            self._finish(record)
            raise

        record.backup_id = backup.backup_id
        record.backup_created_at = backup.created_at
        self.manifest_service.set_backup(backup.backup_id)
        return backup

    def _apply(
        self,
        record: TransactionRecord,
        backup_tier: str,
        apply: Callable[[], ValidationResult],
        commit: Callable[[], None],
    ) -> TransactionRecord:
        committed = False
        interrupted = None
        try:
            record.validation = apply()
            if record.validation.passed:
                commit()
                committed = True
            else:
                failed = [check.name for check in record.validation.checks if not check.passed]
                record.error = f"Validation failed: {', '.join(failed)}"
        except KeyboardInterrupt as exc:
            # Steps are not abortable; undo them before honouring the interrupt.
            logger.warning("Interrupted during transaction %s", record.transaction_id)
            record.error = "Interrupted by user"
            interrupted = exc
        except Exception as exc:
            logger.exception("Transaction %s failed unexpectedly", record.transaction_id)
            record.error = str(exc)

        if committed:
            record.status = TransactionStatus.SUCCESS
            self._auto_prune(backup_tier)
            return self._finish(record)

        self._roll_back(record, backup_tier)
        if interrupted is not None:
            raise interrupted
        return record

    def _roll_back(self, record: TransactionRecord, backup_tier: str) -> TransactionRecord:
        console.print("[bold yellow]Transaction failed. Rolling back...[/bold yellow]")
        try:
            record.rollback = self.rollback_controller.rollback(
                backup_tier, self.manifest_service.manifest
            )
        except NoBackupAvailableError as exc:
            record.status = TransactionStatus.FAILED_UNRECOVERABLE
            record.error = str(exc)
            logger.critical(str(exc))
            return self._finish(record)

        if record.rollback.restored:
            record.status = TransactionStatus.ROLLED_BACK
        else:
            record.status = TransactionStatus.FAILED_UNRECOVERABLE
            record.error = record.error or "; ".join(record.rollback.errors)
        return self._finish(record)

    def _finish(self, record: TransactionRecord, write_manifest: bool = True) -> TransactionRecord:
        record.finished_at = self._now()
        if write_manifest:
            self.manifest_service.finalize(record.status.value, error=record.error)
        path = self.transaction_log.save(record)
        if path:
            logger.info("Transaction log written to %s", path)
        return record

    def _auto_prune(self, tier: str):
        if self.settings.keep_backups is None:
            return
        try:
            self.backup_service.prune(tier, self.settings.keep_backups)
        except MigratorError as exc:
            logger.warning("Could not prune backups for %s: %s", tier, exc)

    def run_migration(self, current: str, target: str) -> int:
        logger.info("Starting capacity migration: %s -> %s", current, target)
        return self._run(self.migrate, current, target)

    def run_install(self, tier: str) -> int:
        logger.info("Installing Foundation at capacity tier %s", tier)
        return self._run(self.install, tier)

    def run_uninstall(self) -> int:
        logger.info("Uninstalling Foundation from %s", self.settings.root)
        return self._run(self.uninstall)

    def _run(self, callback: Callable[..., TransactionRecord], *args) -> int:
        try:
            record = callback(*args)
        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            return 1
        except MigratorError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            return 1
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            return 1

        self.reporter.render_record(record)
        return 0 if record.status == TransactionStatus.SUCCESS else 1

    @staticmethod
    def _new_transaction_id() -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        return f"{stamp}-{uuid.uuid4().hex[:8]}"

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat(timespec="microseconds")
