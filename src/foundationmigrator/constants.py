"""Shared constants for FoundationMigrator."""

CAPACITY_TIERS = ["nano", "micro", "small", "medium", "large", "enterprise"]

# Tier key used for backups taken before a fresh install.
BASELINE_TIER = "baseline"

REQUIRED_SECTIONS = ("resources", "services", "dependencies", "metadata")
SUPPORTED_SCHEMA_MAJOR = 1
TIER_DOCUMENT_EXTENSIONS = (".json", ".yml", ".yaml")

STATE_DIRNAME = ".foundation"
TIERS_DIRNAME = "tiers"
CURRENT_DOCUMENT_FILE = "current.json"
MARKER_FILE = ".foundation-installed"
LOCK_FILE = "migration.lock"
MANIFEST_FILE = "manifest.json"
TRANSACTIONS_DIRNAME = "transactions"
BACKUPS_DIRNAME = "backups"
BACKUP_INFO_FILE = "backup-info.json"
BACKUP_DOCUMENT_FILE = "configuration.json"
BACKUP_FILES_DIRNAME = "files"

ARTIFACTS_DIRNAME = "foundation"
SERVICES_DIRNAME = "services"
DEPENDENCIES_FILE = "dependencies.json"
RESOURCES_FILE = "resources.json"
REGISTRY_FILE = "registry.json"

DEFAULT_HEALTH_TIMEOUT = 5.0
MAX_TIER_JUMP_WITHOUT_WARNING = 2

DOWNTIME_ESTIMATES = {
    "nano-micro": "30 seconds",
    "micro-small": "1-2 minutes",
    "small-medium": "2-5 minutes",
    "medium-large": "5-10 minutes",
    "large-enterprise": "10-30 minutes",
}
DEFAULT_DOWNTIME_ESTIMATE = "Variable (complex upgrade)"

BACKUP_FILE_MODE = 0o444
