"""Actionable error catalog for FoundationMigrator."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "tier_not_found": {
        "what": "Configuration not found for capacity tier: {tier}",
        "next": "Add `{path}` or choose one of the tiers available under the tiers directory.",
    },
    "not_installed": {
        "what": "Foundation is not installed in {root}.",
        "next": "Run `foundationmigrator install <tier>` before migrating.",
    },
    "migration_in_progress": {
        "what": "Another migration is already running (lock file: {path}).",
        "next": "Wait for it to finish. Remove the lock file only if no migration process is alive.",
    },
    "backup_failed": {
        "what": "Could not create backup for tier {tier}: {reason}",
        "next": "Check free space and permissions of the backups directory, then retry.",
    },
    "no_backup_available": {
        "what": "No backup found for tier {tier}.",
        "next": "Restore the installation manually and inspect the transaction log.",
    },
    "downgrade_not_allowed": {
        "what": "Cannot downgrade from {current} to {target}.",
        "next": "Pass `--allow-downgrade` to migrate to a lower capacity tier explicitly.",
    },
    "current_tier_mismatch": {
        "what": "Installed tier is {installed}, not {current}.",
        "next": "Run `foundationmigrator status` and pass the installed tier as CURRENT.",
    },
    "restore_check_failed": {
        "what": "Rollback of tier {tier} could not be verified.",
        "next": "Manual intervention required: restore files from backup {backup_id}.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
