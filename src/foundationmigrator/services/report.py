"""Console rendering of plans and transaction outcomes."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from foundationmigrator.models import (
    MigrationPlan,
    RollbackResult,
    TransactionRecord,
    TransactionStatus,
    ValidationResult,
)

STATUS_STYLES = {
    TransactionStatus.SUCCESS: "bold green",
    TransactionStatus.ROLLED_BACK: "bold yellow",
    TransactionStatus.FAILED_UNRECOVERABLE: "bold red",
    TransactionStatus.FAILED: "bold red",
    TransactionStatus.RUNNING: "bold blue",
}


class ReportRenderer:
    """Prints migration plans and transaction reports."""

    def __init__(self, console: Console):
        self.console = console

    def render_plan(self, plan: MigrationPlan):
        source = plan.source_tier or "<not installed>"
        self.console.print(
            f"\n[bold]Migration plan:[/bold] {source} -> {plan.target_tier} "
            f"({plan.direction.value})"
        )
        if plan.is_empty:
            self.console.print("[green]No changes required.[/green]")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2, 0, 0))
        table.add_column("Category")
        table.add_column("Action")
        table.add_column("Target")
        table.add_column("Detail")

        for change in plan.dependency_changes:
            table.add_row("dependency", change.action.value, change.dependency, "")
        for change in plan.service_changes:
            table.add_row("service", change.action.value, change.service, "")
        for name, change in plan.resource_changes.items():
            table.add_row(
                "resource",
                change.direction.value,
                name,
                f"{change.from_value} -> {change.to_value}",
            )

        self.console.print(table)
        self.console.print(f"Estimated downtime: {plan.estimated_downtime}\n")

    def render_steps(self, record: TransactionRecord):
        if not record.steps:
            return

        table = Table(title="Steps", show_header=True, header_style="bold")
        table.add_column("#", justify="right")
        table.add_column("Step")
        table.add_column("Status")
        table.add_column("Error")
        for index, step in enumerate(record.steps, start=1):
            style = "green" if step.succeeded else "red"
            table.add_row(str(index), step.name, f"[{style}]{step.status}[/{style}]", step.error or "")
        self.console.print(table)

    def render_validation(self, validation: Optional[ValidationResult]):
        if validation is None:
            return

        table = Table(title="Validation", show_header=True, header_style="bold")
        table.add_column("Check")
        table.add_column("Result")
        table.add_column("Message")
        for check in validation.checks:
            if check.skipped:
                outcome = "[dim]skipped[/dim]"
            elif check.passed:
                outcome = "[green]passed[/green]"
            else:
                outcome = "[red]failed[/red]"
            table.add_row(check.name, outcome, check.message)
        self.console.print(table)

    def render_rollback(self, rollback: Optional[RollbackResult]):
        if rollback is None:
            return

        if rollback.restored:
            self.console.print(
                f"[yellow]Rolled back using backup {rollback.backup_id}.[/yellow]"
            )
            return

        self.console.print(
            f"[bold red]Rollback from backup {rollback.backup_id} could not be verified. "
            "Manual intervention required.[/bold red]"
        )
        for error in rollback.errors:
            self.console.print(f"  [red]- {error}[/red]")

    def render_record(self, record: TransactionRecord):
        self.render_steps(record)
        self.render_validation(record.validation)
        self.render_rollback(record.rollback)

        style = STATUS_STYLES.get(record.status, "bold")
        self.console.print(
            f"[{style}]Transaction {record.transaction_id}: {record.status.value}[/{style}]"
        )
        if record.error:
            self.console.print(f"[red]{record.error}[/red]")
