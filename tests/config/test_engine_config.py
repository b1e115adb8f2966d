"""Tests for voucher_config: YAML loading, validation and secret resolution."""

import textwrap

import pytest
import yaml

from voucher_config import DEFAULT_CONFIG_PATH, get_active_config
from voucher_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_batch,
    parse_engine_config,
    parse_share_links,
)
from voucher_kernel.exceptions import ConfigurationError

ENV = {"VOUCHER_SIGNING_SECRET": "env-secret-value"}


@pytest.fixture
def config_file(tmp_path):
    def _write(body: str):
        path = tmp_path / "engine.yaml"
        path.write_text(textwrap.dedent(body))
        return path

    return _write


class TestDefaults:

    def test_packaged_defaults(self):
        config = get_active_config(environ=ENV)
        assert config.config_id == "voucher-engine-default"
        assert config.batch.chunk_size == 1000
        assert config.batch.workers == 1
        assert config.share_links.default_expiry_hours == 24
        assert config.share_links.max_expiry_hours == 168
        assert config.serials.max_attempts == 5
        assert config.codec.secret == "env-secret-value"

    def test_missing_secret(self):
        with pytest.raises(ConfigurationError) as exc_info:
            get_active_config(environ={})
        assert exc_info.value.setting == "codec.secret"

    def test_loaded_event_has_no_secret(self, captured_logs):
        config = get_active_config(environ=ENV)
        loaded = [r for r in captured_logs() if r["message"] == "voucher_config_loaded"]
        assert loaded[0]["checksum"] == config.checksum
        assert all("env-secret-value" not in str(r) for r in captured_logs())

    def test_secret_not_in_repr(self):
        config = get_active_config(environ=ENV)
        assert "env-secret-value" not in repr(config)


class TestCustomFile:

    def test_custom_secret_env_and_values(self, config_file):
        path = config_file("""
            config_id: site-a
            version: 3
            codec:
              secret_env: SITE_A_SECRET
            batch:
              chunk_size: 250
              workers: 4
              chunk_pause_seconds: 0.5
        """)
        config = get_active_config(path, environ={"SITE_A_SECRET": "s3cr3t"})
        assert config.version == 3
        assert config.batch.chunk_size == 250
        assert config.batch.chunk_pause_seconds == 0.5
        assert config.codec.secret == "s3cr3t"

    def test_dev_secret_fallback_warns(self, config_file, captured_logs):
        path = config_file("""
            config_id: dev
            version: 1
            codec:
              dev_secret: local-only
        """)
        config = get_active_config(path, environ={})
        assert config.codec.secret == "local-only"
        assert any(r["message"] == "voucher_config_dev_secret_in_use" for r in captured_logs())

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml", environ=ENV)

    def test_invalid_yaml(self, config_file):
        path = config_file("config_id: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_yaml_file(path)


class TestValidation:

    @pytest.mark.parametrize("section,setting", [
        ({"chunk_size": 0}, "batch.chunk_size"),
        ({"chunk_size": 1001}, "batch.chunk_size"),
        ({"workers": 0}, "batch.workers"),
        ({"chunk_pause_seconds": -1}, "batch.chunk_pause_seconds"),
    ])
    def test_batch_limits(self, section, setting):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_batch(section)
        assert exc_info.value.setting == setting

    def test_default_expiry_within_max(self):
        with pytest.raises(ConfigurationError):
            parse_share_links({"default_expiry_hours": 200, "max_expiry_hours": 168})

    def test_missing_identity(self):
        with pytest.raises(KeyError):
            parse_engine_config({"version": 1})


class TestChecksum:

    def test_checksum_ignores_secrets(self):
        base = {"config_id": "x", "version": 1, "codec": {"secret_env": "S"}}
        with_secret = {"config_id": "x", "version": 1, "codec": {"secret_env": "S", "dev_secret": "abc"}}
        assert compute_checksum(base) == compute_checksum(with_secret)

    def test_checksum_tracks_settings(self):
        assert compute_checksum({"batch": {"workers": 1}}) != compute_checksum({"batch": {"workers": 2}})

    def test_packaged_file_exists(self):
        assert DEFAULT_CONFIG_PATH.exists()


class TestSecretOptional:

    def test_tooling_without_secret(self):
        config = get_active_config(environ={}, require_secret=False)
        assert config.codec.secret is None
        assert config.database.url is None

    def test_database_section(self, config_file):
        path = config_file("""
            config_id: db
            version: 1
            database:
              url: sqlite:///vouchers.db
              echo: true
        """)
        config = get_active_config(path, environ=ENV)
        assert config.database.url == "sqlite:///vouchers.db"
        assert config.database.echo is True
