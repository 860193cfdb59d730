import json

import pytest

from foundationmigrator.errors import (
    MigrationInProgressError,
    NotFoundError,
    NotInstalledError,
    ParseError,
)
from foundationmigrator.models import ConfigurationDocument, ServiceState
from foundationmigrator.services.config_store import ConfigurationStore


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    info = warning = error = debug


def _document(tier="small", **overrides):
    data = {
        "metadata": {"tier": tier, "schema_version": "1.0", "description": f"{tier} tier"},
        "resources": {"memory": 4, "cpu": 2},
        "services": {"cache": {"enabled": True, "parameters": {"size": 128}}},
        "dependencies": ["redis"],
    }
    data.update(overrides)
    return data


def _store(tmp_path):
    tiers_dir = tmp_path / "tiers"
    tiers_dir.mkdir()
    return ConfigurationStore(
        tiers_dir=str(tiers_dir),
        state_dir=str(tmp_path / ".foundation"),
        root=str(tmp_path),
        logger=DummyLogger(),
    )


def test_load_reads_json_tier_document(tmp_path):
    store = _store(tmp_path)
    (tmp_path / "tiers" / "small.json").write_text(json.dumps(_document()), encoding="utf-8")

    document = store.load("small")

    assert document.tier == "small"
    assert document.resources == {"memory": 4, "cpu": 2}
    assert document.services["cache"] == ServiceState(enabled=True, parameters={"size": 128})
    assert document.dependencies == ["redis"]


def test_load_reads_yaml_tier_document(tmp_path):
    store = _store(tmp_path)
    (tmp_path / "tiers" / "micro.yml").write_text(
        "metadata:\n"
        "  tier: micro\n"
        "resources:\n"
        "  memory: 1\n"
        "services:\n"
        "  cache: true\n"
        "dependencies: []\n",
        encoding="utf-8",
    )

    document = store.load("micro")

    assert document.services["cache"].enabled is True
    assert store.available_tiers() == ["micro"]


def test_load_missing_tier_raises_not_found(tmp_path):
    store = _store(tmp_path)

    with pytest.raises(NotFoundError, match="Configuration not found for capacity tier: large"):
        store.load("large")


def test_load_rejects_missing_sections(tmp_path):
    store = _store(tmp_path)
    data = _document()
    del data["services"]
    (tmp_path / "tiers" / "small.json").write_text(json.dumps(data), encoding="utf-8")

    with pytest.raises(ParseError, match="missing required sections: services"):
        store.load("small")


def test_load_rejects_tier_mismatch(tmp_path):
    store = _store(tmp_path)
    (tmp_path / "tiers" / "small.json").write_text(
        json.dumps(_document(tier="medium")), encoding="utf-8"
    )

    with pytest.raises(ParseError, match="Capacity tier mismatch"):
        store.load("small")


def test_load_rejects_invalid_json(tmp_path):
    store = _store(tmp_path)
    (tmp_path / "tiers" / "small.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ParseError, match="Could not parse"):
        store.load("small")


def test_load_rejects_non_numeric_resource(tmp_path):
    store = _store(tmp_path)
    (tmp_path / "tiers" / "small.json").write_text(
        json.dumps(_document(resources={"memory": "4GB"})), encoding="utf-8"
    )

    with pytest.raises(ParseError, match="must be numeric"):
        store.load("small")


def test_load_rejects_unsupported_schema_version(tmp_path):
    store = _store(tmp_path)
    data = _document()
    data["metadata"]["schema_version"] = "2.0"
    (tmp_path / "tiers" / "small.json").write_text(json.dumps(data), encoding="utf-8")

    with pytest.raises(ParseError, match="unsupported schema_version"):
        store.load("small")


def test_load_rejects_service_names_that_escape_the_root(tmp_path):
    store = _store(tmp_path)
    (tmp_path / "tiers" / "small.json").write_text(
        json.dumps(_document(services={"../evil": True})), encoding="utf-8"
    )

    with pytest.raises(ParseError, match="Invalid service name"):
        store.load("small")


def test_load_current_requires_installation(tmp_path):
    store = _store(tmp_path)

    assert store.is_installed() is False
    with pytest.raises(NotInstalledError, match="not installed"):
        store.load_current()


def test_save_persists_current_document_and_marker(tmp_path):
    store = _store(tmp_path)
    document = ConfigurationDocument(
        tier="small",
        resources={"memory": 4},
        services={"cache": ServiceState(enabled=True)},
        dependencies=["redis"],
        metadata={"tier": "small", "schema_version": "1.0"},
    )

    store.save(document)

    assert store.is_installed() is True
    assert store.load_current() == document
    marker = json.loads((tmp_path / ".foundation-installed").read_text(encoding="utf-8"))
    assert marker["tier"] == "small"
    assert marker["installed_at"]
    assert not [p for p in (tmp_path / ".foundation").iterdir() if p.name.startswith("current-")]


def test_clear_returns_to_not_installed(tmp_path):
    store = _store(tmp_path)
    store.save(
        ConfigurationDocument(tier="nano", metadata={"tier": "nano"}, dependencies=[])
    )

    store.clear()

    assert store.is_installed() is False


def test_lock_is_exclusive_and_released(tmp_path):
    store = _store(tmp_path)

    with store.lock():
        with pytest.raises(MigrationInProgressError, match="already running"):
            with store.lock():
                pass

    with store.lock():
        pass
    assert not (tmp_path / ".foundation" / "migration.lock").exists()
