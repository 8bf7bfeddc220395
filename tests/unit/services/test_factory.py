"""Unit tests for adapter factory functions."""

import json
from pathlib import Path

import pytest

from authstore.errors import ConfigurationError
from authstore.models.enums import ConnectionMode, FieldType
from authstore.services.adapter import Adapter
from authstore.services.factory import create_adapter, create_test_adapter, load_models

_SCHEMA = {
    "user": {
        "fields": {
            "email": {"type": "string", "required": True, "unique": True},
            "emailVerified": {"type": "boolean", "default_value": False},
        }
    },
    "session": {
        "table_name": "auth_session",
        "fields": {
            "userId": {"type": "reference", "references": "user", "required": True},
            "expiresAt": {"type": "date"},
        },
    },
}


@pytest.fixture
def schema_file(tmp_path: Path) -> Path:
    path = tmp_path / "auth-schema.json"
    path.write_text(json.dumps(_SCHEMA), encoding="utf-8")
    return path


class TestLoadModels:
    """Tests for loading model descriptors from JSON."""

    def test_loads_models_in_file_order(self, schema_file: Path) -> None:
        models = load_models(schema_file)

        assert [model.name for model in models] == ["user", "session"]
        assert models[0].fields["emailVerified"].type == FieldType.BOOLEAN
        assert models[1].physical_table(use_plural=True) == "auth_session"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            load_models(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_models(path)

    def test_top_level_must_be_an_object(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text("[]", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_models(path)

    def test_invalid_descriptor(self, tmp_path: Path) -> None:
        path = tmp_path / "invalid.json"
        path.write_text(json.dumps({"user": {"fields": {"email": {"type": "uuid"}}}}), encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_models(path)


class TestCreateAdapter:
    """Tests for the production factory."""

    @pytest.mark.parametrize(
        ("options", "mode"),
        [
            ({"url": ":memory:"}, ConnectionMode.LOCAL),
            ({"url": "libsql://auth.example.turso.io", "auth_token": "secret"}, ConnectionMode.REMOTE),
            (
                {"url": "replica.db", "sync_url": "libsql://auth.example.turso.io", "sync_interval": 30},
                ConnectionMode.REPLICA,
            ),
        ],
    )
    def test_resolves_connection_mode(self, schema_file: Path, options: dict, mode: ConnectionMode) -> None:
        adapter = create_adapter(load_models(schema_file), **options)

        assert isinstance(adapter, Adapter)
        assert adapter.connection.mode == mode
        assert not adapter.connection.is_open

    def test_rejects_unknown_options(self, schema_file: Path) -> None:
        with pytest.raises(ConfigurationError):
            create_adapter(load_models(schema_file), url=":memory:", plural=True)

    @pytest.mark.slow
    async def test_local_adapter_round_trip(self, schema_file: Path, tmp_path: Path) -> None:
        async with create_adapter(load_models(schema_file), url=str(tmp_path / "auth.db")) as adapter:
            user = await adapter.create("user", {"email": "a@x.com"})
            found = await adapter.find_one("user", [{"field": "id", "value": user["id"]}])

        assert found == user
        assert (tmp_path / "auth.db").exists()


async def test_test_adapters_do_not_share_storage(schema_file: Path) -> None:
    models = load_models(schema_file)
    async with create_test_adapter(models) as first, create_test_adapter(models) as second:
        await first.create("user", {"email": "a@x.com"})

        assert await first.count("user") == 1
        assert await second.count("user") == 0
