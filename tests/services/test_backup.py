import os
import stat
import sys

import pytest

from foundationmigrator.errors import BackupFailedError, MigratorError
from foundationmigrator.models import ConfigurationDocument, ServiceState
from foundationmigrator.services.backup import BackupService
from foundationmigrator.services.filesystem import FileSystemService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    info = warning = error = debug


class DummyConsole:
    def __init__(self):
        self.messages = []

    def print(self, message):
        self.messages.append(message)


def _service(tmp_path, backups_dir=None):
    return BackupService(
        backups_dir=str(backups_dir or tmp_path / "backups"),
        root=str(tmp_path / "root"),
        filesystem_service=FileSystemService(logger=DummyLogger(), console=DummyConsole()),
        logger=DummyLogger(),
    )


def _write(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def test_create_backup_copies_present_files_and_records_absent_ones(tmp_path):
    _write(tmp_path / "root" / "foundation" / "resources.json", b'{"memory": 4}\n')
    service = _service(tmp_path)
    document = ConfigurationDocument(
        tier="small", resources={"memory": 4}, services={"cache": ServiceState(True)}
    )

    backup = service.create_backup(
        "small",
        ["foundation/resources.json", "foundation/services/search.json"],
        document,
    )

    assert backup.backup_id.startswith("small-")
    assert backup.entries == {
        "foundation/resources.json": "present",
        "foundation/services/search.json": "absent",
    }
    assert backup.is_absent("foundation/services/search.json")
    assert service.read_file(backup, "foundation/resources.json") == b'{"memory": 4}\n'
    assert backup.document == document
    assert os.path.exists(os.path.join(backup.path, "backup-info.json"))


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions only")
def test_create_backup_makes_stored_files_read_only(tmp_path):
    _write(tmp_path / "root" / "foundation" / "dependencies.json", b"[]\n")
    service = _service(tmp_path)

    backup = service.create_backup("nano", ["foundation/dependencies.json"], None)

    stored = os.path.join(backup.path, "files", "foundation", "dependencies.json")
    assert stat.S_IMODE(os.stat(stored).st_mode) == 0o444


def test_backup_document_is_snapshot_not_reference(tmp_path):
    service = _service(tmp_path)
    document = ConfigurationDocument(tier="small", resources={"memory": 4})

    backup = service.create_backup("small", [], document)
    document.resources["memory"] = 64

    assert backup.document.resources == {"memory": 4}
    assert service.get_backup(backup.backup_id).document.resources == {"memory": 4}


def test_create_backup_fails_when_backups_dir_is_unusable(tmp_path):
    blocker = tmp_path / "backups"
    blocker.write_text("not a directory", encoding="utf-8")
    service = _service(tmp_path, backups_dir=blocker)

    with pytest.raises(BackupFailedError, match="Could not create backup for tier small"):
        service.create_backup("small", [], None)


def test_list_backups_newest_first_and_filters_by_tier(tmp_path):
    service = _service(tmp_path)
    first = service.create_backup("small", [], None)
    second = service.create_backup("small", [], None)
    service.create_backup("medium", [], None)

    backups = service.list_backups("small")

    assert [item.backup_id for item in backups] == [second.backup_id, first.backup_id]
    assert service.latest_backup("small").backup_id == second.backup_id
    assert service.latest_backup("large") is None


def test_list_backups_skips_unreadable_entries(tmp_path):
    service = _service(tmp_path)
    service.create_backup("small", [], None)
    (tmp_path / "backups" / "garbage").mkdir()

    assert len(service.list_backups("small")) == 1


def test_get_backup_rejects_unknown_or_path_like_ids(tmp_path):
    service = _service(tmp_path)

    with pytest.raises(MigratorError, match="Backup not found"):
        service.get_backup("missing")
    with pytest.raises(MigratorError, match="Backup not found"):
        service.get_backup("../backups")


def test_prune_keeps_newest_backups(tmp_path):
    service = _service(tmp_path)
    ids = [service.create_backup("small", [], None).backup_id for _ in range(3)]

    removed = service.prune("small", keep=1)

    assert removed == [ids[1], ids[0]]
    assert [item.backup_id for item in service.list_backups("small")] == [ids[2]]


def test_prune_rejects_negative_keep(tmp_path):
    with pytest.raises(MigratorError, match="cannot be negative"):
        _service(tmp_path).prune("small", keep=-1)
