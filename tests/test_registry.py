"""Tests for the JSON-file project registry."""

import json

import pytest

from mcp_control.errors import InvalidIdError, ValidationError
from mcp_control.models import ProjectStatus, ProjectType, SourceKind
from mcp_control.registry import ProjectRegistry


@pytest.fixture
def registry(tmp_path):
    return ProjectRegistry(tmp_path / "data" / "projects.json")


class TestLoad:
    def test_missing_file_is_empty(self, registry):
        assert registry.load() == []

    def test_empty_file_is_empty(self, registry):
        registry.path.parent.mkdir(parents=True)
        registry.path.write_text("  \n")
        assert registry.load() == []

    def test_missing_projects_key_is_empty(self, registry):
        registry.path.parent.mkdir(parents=True)
        registry.path.write_text('{"other": 1}')
        assert registry.load() == []


class TestUpsert:
    def test_insert_fills_defaults(self, registry):
        project = registry.upsert("demo", "json")

        assert project.mount_path == "/p/demo/mcp"
        assert project.status == ProjectStatus.DRAFT
        assert project.token_env_name == "MCP_DEMO_BEARER_TOKEN"
        assert project.last_deploy_at is None
        assert project.host_port is None

    def test_round_trip(self, registry):
        created = registry.upsert("demo", ProjectType.OPENAPI, "/custom/mcp")

        loaded = registry.get("demo")
        assert loaded == created

    def test_file_layout(self, registry):
        registry.upsert("demo", "json")

        data = json.loads(registry.path.read_text())
        assert [p["id"] for p in data["projects"]] == ["demo"]
        assert data["projects"][0]["mountPath"] == "/p/demo/mcp"

    def test_update_preserves_identity_fields(self, registry):
        created = registry.upsert("demo", "json")
        registry.mark_deployed("demo", host_port=19001, proxy_changed=True)

        updated = registry.upsert("demo", "postgres", "/p/demo/v2")

        assert updated.id == "demo"
        assert updated.created_at == created.created_at
        assert updated.status == ProjectStatus.DEPLOYED
        assert updated.host_port == 19001
        assert updated.proxy_changed is True
        assert updated.type == ProjectType.POSTGRES
        assert updated.mount_path == "/p/demo/v2"

    def test_update_keeps_source_refs_unless_supplied(self, registry):
        registry.upsert(
            "demo", "json", source_url="https://example.com/a.json", source_kind=SourceKind.URL
        )

        updated = registry.upsert("demo", "json")

        assert updated.source_url == "https://example.com/a.json"
        assert updated.source_kind == SourceKind.URL

    def test_source_kind_without_url_clears_url(self, registry):
        registry.upsert(
            "demo", "json", source_url="https://example.com/a.json", source_kind=SourceKind.URL
        )

        updated = registry.upsert("demo", "json", source_kind=SourceKind.INLINE)

        assert updated.source_kind == SourceKind.INLINE
        assert updated.source_url is None
        assert registry.get("demo").source_url is None

    @pytest.mark.parametrize("mount_path", ["/p/x;{}", "/p/x\ny", "p/x", "/p/x y"])
    def test_unsafe_mount_path_rejected(self, registry, mount_path):
        with pytest.raises(ValidationError, match="bad mount path"):
            registry.upsert("demo", "json", mount_path)
        assert not registry.path.exists()

    def test_no_duplicates(self, registry):
        registry.upsert("demo", "json")
        registry.upsert("demo", "json")
        registry.upsert("other", "mysql")

        assert [p.id for p in registry.load()] == ["demo", "other"]

    def test_invalid_id_rejected(self, registry):
        with pytest.raises(InvalidIdError):
            registry.upsert("Bad Id", "json")
        assert not registry.path.exists()

    def test_invalid_type_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.upsert("demo", "redis")

    def test_no_temp_files_left(self, registry):
        registry.upsert("demo", "json")
        registry.upsert("demo", "json")

        assert [p.name for p in registry.path.parent.iterdir()] == ["projects.json"]


class TestMarkDeployed:
    def test_unknown_id_returns_none(self, registry):
        registry.upsert("demo", "json")

        assert registry.mark_deployed("ghost") is None
        assert [p.id for p in registry.load()] == ["demo"]

    def test_unknown_id_on_empty_registry_creates_nothing(self, registry):
        assert registry.mark_deployed("ghost", host_port=1) is None
        assert not registry.path.exists()

    def test_transitions_and_stamps(self, registry):
        registry.upsert("demo", "json")

        project = registry.mark_deployed("demo", host_port=19001, proxy_changed=True)

        assert project.status == ProjectStatus.DEPLOYED
        assert project.last_deploy_at is not None
        assert project.host_port == 19001
        assert project.proxy_changed is True
        assert registry.get("demo") == project

    def test_missing_info_keeps_previous_values(self, registry):
        registry.upsert("demo", "json")
        registry.mark_deployed("demo", host_port=19001, proxy_changed=True)

        project = registry.mark_deployed("demo")

        assert project.host_port == 19001
        assert project.proxy_changed is True
