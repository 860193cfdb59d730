import os
import stat
import sys

import pytest

from foundationmigrator.errors import NoBackupAvailableError
from foundationmigrator.models import ConfigurationDocument, ServiceState
from foundationmigrator.services.backup import BackupService
from foundationmigrator.services.config_store import ConfigurationStore
from foundationmigrator.services.filesystem import FileSystemService
from foundationmigrator.services.layout import ArtifactLayout
from foundationmigrator.services.rollback import RollbackController
from foundationmigrator.services.validation import ValidationService


class DummyLogger:
    def __init__(self):
        self.critical_messages = []

    def debug(self, *_args, **_kwargs):
        return None

    info = warning = error = debug

    def critical(self, message, *args):
        self.critical_messages.append(message % args if args else message)


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


@pytest.fixture
def env(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    logger = DummyLogger()
    store = ConfigurationStore(
        tiers_dir=str(tmp_path / "tiers"),
        state_dir=str(root / ".foundation"),
        root=str(root),
        logger=logger,
    )
    backups = BackupService(
        backups_dir=str(tmp_path / "backups"),
        root=str(root),
        filesystem_service=FileSystemService(logger=logger, console=DummyConsole()),
        logger=logger,
    )
    controller = RollbackController(
        backup_service=backups,
        config_store=store,
        validation_service=ValidationService(ArtifactLayout(str(root)), logger),
        root=str(root),
        logger=logger,
    )
    return root, store, backups, controller, logger


def _write(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def test_rollback_restores_bytes_and_removes_new_files(env):
    root, store, backups, controller, _logger = env
    original = ConfigurationDocument(
        tier="small",
        resources={"memory": 4},
        services={"cache": ServiceState(True)},
        metadata={"tier": "small"},
    )
    store.save(original)
    _write(root / "foundation" / "resources.json", b'{"memory":4}')
    backup = backups.create_backup(
        "small",
        ["foundation/resources.json", "foundation/services/search.json"],
        original,
    )

    _write(root / "foundation" / "resources.json", b'{"memory":8}')
    _write(root / "foundation" / "services" / "search.json", b"{}")
    store.save(ConfigurationDocument(tier="medium", metadata={"tier": "medium"}))

    result = controller.rollback("small")

    assert result.restored
    assert result.backup_id == backup.backup_id
    assert (root / "foundation" / "resources.json").read_bytes() == b'{"memory":4}'
    assert not (root / "foundation" / "services" / "search.json").exists()
    assert store.load_current() == original


def test_rollback_uses_matching_manifest_for_paths_outside_backup(env):
    root, store, backups, controller, _logger = env
    store.save(ConfigurationDocument(tier="small", metadata={"tier": "small"}))
    backup = backups.create_backup("small", [], store.load_current())
    _write(root / "foundation" / "extra.json", b"{}")

    result = controller.restore(
        backup,
        {"backup_id": backup.backup_id, "files": {"foundation/extra.json": "created"}},
    )

    assert result.restored
    assert not (root / "foundation" / "extra.json").exists()


def test_rollback_ignores_manifest_of_another_backup(env):
    root, store, backups, controller, _logger = env
    store.save(ConfigurationDocument(tier="small", metadata={"tier": "small"}))
    backup = backups.create_backup("small", [], store.load_current())
    _write(root / "foundation" / "extra.json", b"{}")

    result = controller.restore(
        backup, {"backup_id": "other", "files": {"foundation/extra.json": "created"}}
    )

    assert result.restored
    assert (root / "foundation" / "extra.json").exists()


def test_rollback_reports_modified_paths_not_covered_by_backup(env):
    _root, store, backups, controller, logger = env
    store.save(ConfigurationDocument(tier="small", metadata={"tier": "small"}))
    backup = backups.create_backup("small", [], store.load_current())

    result = controller.restore(
        backup,
        {"backup_id": backup.backup_id, "files": {"foundation/resources.json": "modified"}},
    )

    assert not result.restored
    assert "not covered by the backup" in result.errors[0]
    assert "Manual intervention required" in logger.critical_messages[0]


def test_rollback_of_install_clears_installation(env):
    root, store, backups, controller, _logger = env
    backup = backups.create_backup("baseline", ["foundation/resources.json"], None)
    _write(root / "foundation" / "resources.json", b"{}")
    store.save(ConfigurationDocument(tier="nano", metadata={"tier": "nano"}))

    result = controller.restore(backup)

    assert result.restored
    assert not store.is_installed()
    assert not (root / "foundation" / "resources.json").exists()


def test_rollback_without_backup_raises(env):
    _root, _store, _backups, controller, _logger = env

    with pytest.raises(NoBackupAvailableError, match="No backup found for tier large"):
        controller.rollback("large")


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions only")
def test_rollback_restores_original_file_modes(env):
    root, store, backups, controller, _logger = env
    store.save(ConfigurationDocument(tier="small", metadata={"tier": "small"}))
    resources = root / "foundation" / "resources.json"
    secrets = root / "foundation" / "services" / "vault.json"
    _write(resources, b'{"memory":4}')
    _write(secrets, b'{"token":"x"}')
    os.chmod(resources, 0o644)
    os.chmod(secrets, 0o600)
    backup = backups.create_backup(
        "small", ["foundation/resources.json", "foundation/services/vault.json"], store.load_current()
    )
    os.remove(resources)
    _write(secrets, b"{}")
    os.chmod(secrets, 0o666)

    result = controller.rollback("small")

    assert result.restored
    assert stat.S_IMODE(os.stat(resources).st_mode) == 0o644
    assert stat.S_IMODE(os.stat(secrets).st_mode) == 0o600
    assert backups.get_backup(backup.backup_id).modes["foundation/resources.json"] == 0o644
