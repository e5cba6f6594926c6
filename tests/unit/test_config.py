"""Unit tests for the config module."""

import os
import stat
from pathlib import Path

import pytest
import yaml

from site_relocator.constants import DEFAULT_RSYNC_EXCLUDES
from site_relocator.core.config import (
    KNOWN_KEYS,
    DatabaseSpec,
    RelocationConfig,
    config_dir,
    create_default_config,
    load_defaults,
    save_defaults,
)
from site_relocator.exceptions import ConfigError
from site_relocator.types import DbMode, Origin, Role, SiteMode, TransferStrategy


def test_from_dict_defaults(base_settings):
    """Unset keys fall back to their documented defaults."""
    config = RelocationConfig.from_dict(base_settings)

    assert config.source.port == 22
    assert config.source.db.host == "localhost"
    assert config.transfer_mode is TransferStrategy.DIRECT
    assert config.db_mode is DbMode.BUFFER
    assert config.db_compress == "auto"
    assert config.site_mode is SiteMode.AUTO
    assert config.origin is Origin.AUTO
    assert config.maintenance == "prompt"
    assert config.rsync_excludes == DEFAULT_RSYNC_EXCLUDES
    assert config.start_step == 1
    assert config.log_file is None
    assert config.databases == (DatabaseSpec("shop", "shop"),)


def test_from_dict_coerces_strings(base_settings):
    config = RelocationConfig.from_dict(
        {
            **base_settings,
            "source_port": "2222",
            "skip_assets": "yes",
            "db_mode": "AUTO",
            "exclude_tables": "wp_sessions, shop.cache",
            "maintenance": False,
        }
    )
    assert config.source.port == 2222
    assert config.skip_assets is True
    assert config.db_mode is DbMode.AUTO
    assert config.exclude_tables == ("wp_sessions", "shop.cache")
    assert config.maintenance == "off"


def test_only_db_skips_file_transfers(base_settings):
    config = RelocationConfig.from_dict({**base_settings, "only_db": True})
    assert config.skip_code and config.skip_assets
    assert not config.moves_files


@pytest.mark.parametrize(
    "key, value",
    [
        ("transfer_mode", "carrier-pigeon"),
        ("db_compress", "zstd"),
        ("source_port", "seventy"),
        ("source_port", 70000),
        ("skip_db", "maybe"),
        ("maintenance", "sometimes"),
    ],
)
def test_from_dict_rejects_bad_values(base_settings, key, value):
    with pytest.raises(ConfigError):
        RelocationConfig.from_dict({**base_settings, key: value})


def test_log_file_default_and_disable(base_settings):
    settings = dict(base_settings)
    del settings["log_file"]
    config = RelocationConfig.from_dict(settings)
    assert config.log_file is not None
    assert config.log_file.endswith(".jsonl")

    assert RelocationConfig.from_dict({**settings, "log_file": False}).log_file is None


def test_secrets_and_endpoint_lookup(base_settings):
    config = RelocationConfig.from_dict({**base_settings, "source_password": "ssh-pw"})

    assert set(config.secrets) == {"ssh-pw", "old-db-secret", "new-db-secret"}
    assert config.endpoint(Role.SOURCE) is config.source
    assert config.endpoint(Role.DESTINATION) is config.destination
    assert "ssh-pw" not in repr(config)


def test_assets_dir_for_mode(base_settings):
    config = RelocationConfig.from_dict(base_settings)
    assert config.assets_dir_for(SiteMode.WORDPRESS) == "wp-content/uploads"
    assert config.assets_dir_for(SiteMode.GENERIC) == "public/uploads"

    custom = RelocationConfig.from_dict({**base_settings, "assets_dir": "/media/"})
    assert custom.assets_dir_for(SiteMode.WORDPRESS) == "media"


def test_validate_lists_every_missing_key():
    config = RelocationConfig.from_dict({"log_file": ""})
    with pytest.raises(ConfigError) as exc_info:
        config.validate()
    message = str(exc_info.value)
    for key in ("source_host", "destination_user", "source_web_root", "databases"):
        assert key in message


def test_validate_accepts_complete_settings(base_settings):
    RelocationConfig.from_dict(base_settings).validate()


def test_validate_destination_root_optional_with_provisioning(base_settings):
    settings = {
        **base_settings,
        "destination_web_root": "",
        "provision": True,
        "plesk_domain": "example.org",
    }
    RelocationConfig.from_dict(settings).validate()


def test_unknown_keys_are_ignored(base_settings, caplog):
    config = RelocationConfig.from_dict({**base_settings, "colour": "blue"})
    assert config.source.host == "old.example.com"
    assert "colour" in caplog.text


def test_database_spec_parse():
    assert DatabaseSpec.parse("shop") == DatabaseSpec("shop", "shop")
    assert DatabaseSpec.parse(" old : new ") == DatabaseSpec("old", "new")
    for bad in ("", "old:", ":new"):
        with pytest.raises(ConfigError):
            DatabaseSpec.parse(bad)


def test_load_defaults_missing_file(tmp_path):
    assert load_defaults(tmp_path / "absent.yaml") == {}


def test_load_defaults_empty_file(tmp_path):
    path = tmp_path / "defaults.yaml"
    path.write_text("")
    assert load_defaults(path) == {}


def test_load_defaults_invalid_yaml(tmp_path):
    path = tmp_path / "defaults.yaml"
    path.write_text("source_host: [unclosed\n")
    with pytest.raises(ConfigError):
        load_defaults(path)


def test_load_defaults_requires_mapping(tmp_path):
    path = tmp_path / "defaults.yaml"
    path.write_text("- one\n- two\n")
    with pytest.raises(ConfigError):
        load_defaults(path)


def test_save_defaults_round_trip_and_permissions(tmp_path):
    path = tmp_path / "cfg" / "defaults.yaml"
    save_defaults(path, {"source_host": "old.example.com", "source_port": 22, "unused": None})

    assert load_defaults(path) == {"source_host": "old.example.com", "source_port": 22}
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert stat.S_IMODE(os.stat(path.parent).st_mode) == 0o700


def test_create_default_config(tmp_path):
    path = tmp_path / "defaults.yaml"
    assert create_default_config(path) is True

    with open(path) as f:
        data = yaml.safe_load(f)
    assert set(data) <= set(KNOWN_KEYS)
    assert data["source_port"] == 22
    assert data["source_password"] == ""


def test_create_default_config_no_overwrite(tmp_path):
    path = tmp_path / "defaults.yaml"
    path.write_text("source_host: keep\n")
    assert create_default_config(path) is False
    assert path.read_text() == "source_host: keep\n"


def test_config_dir_honours_xdg(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    assert config_dir() == Path(tmp_path) / "site-relocator"
