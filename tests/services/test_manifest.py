import json

from foundationmigrator.services.manifest import ManifestService


class DummyLogger:
    def __init__(self):
        self.warnings = []

    def warning(self, message, *args):
        self.warnings.append(message % args)


def test_manifest_records_first_change_per_path(tmp_path):
    manifest_file = tmp_path / "manifest.json"
    service = ManifestService(str(manifest_file), DummyLogger())

    service.start("tx-1", "small", "medium")
    service.set_backup("small-1")
    service.record_file("foundation/resources.json", "created")
    service.record_file("foundation/resources.json", "modified")
    service.finalize("success")

    data = json.loads(manifest_file.read_text(encoding="utf-8"))
    assert data["transaction_id"] == "tx-1"
    assert data["tiers"] == {"source": "small", "target": "medium"}
    assert data["backup_id"] == "small-1"
    assert data["files"] == {"foundation/resources.json": "created"}
    assert data["status"] == "success"
    assert data["duration_seconds"] >= 0
    assert service.load() == data


def test_start_resets_previous_manifest(tmp_path):
    service = ManifestService(str(tmp_path / "manifest.json"), DummyLogger())
    service.start("tx-1", "small", "medium")
    service.record_file("foundation/resources.json", "created")

    service.start("tx-2", "medium", "large")

    assert service.manifest["files"] == {}
    assert service.load()["transaction_id"] == "tx-2"


def test_load_returns_none_for_missing_or_corrupt_manifest(tmp_path):
    manifest_file = tmp_path / "manifest.json"
    logger = DummyLogger()
    service = ManifestService(str(manifest_file), logger)

    assert service.load() is None

    manifest_file.write_text("{oops", encoding="utf-8")
    assert service.load() is None
    assert "Could not read manifest file" in logger.warnings[0]


def test_write_failure_only_warns(tmp_path):
    blocker = tmp_path / "state"
    blocker.write_text("file", encoding="utf-8")
    logger = DummyLogger()
    service = ManifestService(str(blocker / "manifest.json"), logger)

    service.start("tx-1", None, "nano")

    assert "Could not write manifest file" in logger.warnings[0]
