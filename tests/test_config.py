from pathlib import Path

import pytest

from mtr_provisioner.config import (
    LEGACY_ENV_NAMES,
    ConfigurationError,
    ensure_default_config,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for names in LEGACY_ENV_NAMES.values():
        for name in names:
            monkeypatch.delenv(name, raising=False)
    for name in ("MTR_CONFIG", "MTR_GRAPH__TENANT_ID", "MTR_GROUPS__PRO_LICENSE", "MTR_WEB__PORT"):
        monkeypatch.delenv(name, raising=False)


def write_settings(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_loads_yaml(tmp_path):
    path = write_settings(
        tmp_path,
        """
graph:
  tenant_id: tenant
  client_id: client
  client_secret: secret
groups:
  resource_account: grp-mtr
accounts:
  password_length: 20
logging:
  level: debug
  directory: logs
""",
    )
    config = load_config(path)
    assert config.graph.has_credentials
    assert config.groups.resource_account == "grp-mtr"
    assert config.groups.room_account is None
    assert config.accounts.password_length == 20
    assert config.logging.level == "DEBUG"
    assert config.logging.directory == Path("logs")
    assert config.web.port == 5000


def test_environment_overrides(tmp_path, monkeypatch):
    path = write_settings(tmp_path, "graph:\n  tenant_id: from-file\n")
    monkeypatch.setenv("MTR_GRAPH__TENANT_ID", "from-env")
    monkeypatch.setenv("MTR_GROUPS__PRO_LICENSE", "grp-pro")
    monkeypatch.setenv("MTR_WEB__PORT", "8080")
    config = load_config(path)
    assert config.graph.tenant_id == "from-env"
    assert config.groups.pro_license == "grp-pro"
    assert config.web.port == 8080


def test_legacy_environment_fills_unset_values(tmp_path, monkeypatch):
    path = write_settings(tmp_path, "groups:\n  room_account: grp-from-file\n")
    monkeypatch.setenv("TENANT_ID", "legacy-tenant")
    monkeypatch.setenv("MTR-ResourceAccountsID", "grp-mtr")
    monkeypatch.setenv("SHARED_GROUP_ID", "ignored")
    config = load_config(path)
    assert config.graph.tenant_id == "legacy-tenant"
    assert config.groups.resource_account == "grp-mtr"
    assert config.groups.room_account == "grp-from-file"


def test_missing_explicit_file(tmp_path):
    with pytest.raises(ConfigurationError, match="does not exist"):
        load_config(tmp_path / "missing.yaml")


def test_environment_only_without_template(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AZURE_CLIENT_ID", "client")
    config = load_config()
    assert config.graph.client_id == "client"
    assert not (tmp_path / "config" / "settings.yaml").exists()


def test_ensure_default_config_copies_template(tmp_path):
    template = write_settings(tmp_path, "web:\n  port: 9000\n")
    target = ensure_default_config(tmp_path / "config" / "settings.yaml", template)
    assert target.read_text(encoding="utf-8") == "web:\n  port: 9000\n"


@pytest.mark.parametrize(
    "text, message",
    [
        ("- a\n- b\n", "must contain a mapping"),
        ("graph: [1, 2]\n", "must be a mapping"),
        ("accounts:\n  password_length: 6\n", "at least 8"),
        ("web:\n  port: abc\n", "must be an integer"),
        ("graph: {tenant_id: [\n", "not valid YAML"),
    ],
)
def test_invalid_settings(tmp_path, text, message):
    with pytest.raises(ConfigurationError, match=message):
        load_config(write_settings(tmp_path, text))
