"""
Tests for configuration loading, resolution and typed settings.
"""

import logging
from pathlib import Path

import pytest

from sfmigrator.config import MigratorSettings, load_config
from sfmigrator.config.loader import Config, _merge_dict
from sfmigrator.config.resolver import resolve_config
from sfmigrator.exceptions import ConfigurationError


class TestConfig:
    """Tests for Config class."""

    def test_dot_notation(self):
        cfg = Config({"orgs": {"source": "dev"}})
        assert cfg.get("orgs.source") == "dev"

    def test_dot_notation_missing_returns_default(self):
        cfg = Config({"orgs": "dev"})
        assert cfg.get("orgs.source.alias", "fallback") == "fallback"

    def test_contains(self):
        cfg = Config({"polling": {"interval": 1}})
        assert "polling" in cfg
        assert "polling.interval" in cfg
        assert "polling.max_attempts" not in cfg

    def test_getitem(self):
        cfg = Config({"name": "x", "api": {"request_timeout": 30}})
        assert cfg["name"] == "x"
        assert isinstance(cfg["api"], Config)
        assert cfg["api"]["request_timeout"] == 30
        assert cfg["api.request_timeout"] == 30

    def test_getitem_missing_raises(self):
        with pytest.raises(KeyError):
            _ = Config({})["missing"]

    def test_iter(self):
        assert list(Config({"a": 1, "b": 2})) == ["a", "b"]

    def test_validate_sections_must_be_mappings(self):
        with pytest.raises(ConfigurationError, match="'polling' must be a mapping"):
            Config({"polling": 5}).validate()


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path)
        assert cfg.data == {}
        assert cfg.path is None

    def test_load_basic_config(self, tmp_path):
        (tmp_path / "migrator.yaml").write_text("orgs:\n  source: dev\n  target: uat\n")
        cfg = load_config(tmp_path)
        assert cfg.get("orgs.target") == "uat"
        assert cfg.path == tmp_path / "migrator.yaml"

    def test_env_overlay(self, tmp_path):
        (tmp_path / "migrator.yaml").write_text("orgs:\n  source: dev\n  target: uat\npolling:\n  interval: 1\n")
        (tmp_path / "migrator.prod.yaml").write_text("orgs:\n  target: prod\n")
        cfg = load_config(tmp_path, env="prod")
        assert cfg.get("orgs.source") == "dev"
        assert cfg.get("orgs.target") == "prod"
        assert cfg.get("polling.interval") == 1

    def test_overlay_without_base(self, tmp_path):
        (tmp_path / "migrator.ci.yaml").write_text("cli:\n  executable: /opt/sf/bin/sf\n")
        assert load_config(tmp_path, env="ci").get("cli.executable") == "/opt/sf/bin/sf"

    def test_empty_file(self, tmp_path):
        (tmp_path / "migrator.yaml").write_text("")
        assert load_config(tmp_path).data == {}

    def test_invalid_yaml_reports_position(self, tmp_path):
        (tmp_path / "migrator.yaml").write_text("orgs:\n  source: [dev\n")
        with pytest.raises(ConfigurationError, match="line"):
            load_config(tmp_path)

    def test_non_mapping_document(self, tmp_path):
        (tmp_path / "migrator.yaml").write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            load_config(tmp_path)

    def test_env_var_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TARGET_ORG", "uat-sandbox")
        (tmp_path / "migrator.yaml").write_text("orgs:\n  target: ${TARGET_ORG}\n  source: ${UNSET_SOURCE_ORG}\n")
        cfg = load_config(tmp_path)
        assert cfg.get("orgs.target") == "uat-sandbox"
        assert cfg.get("orgs.source") == "${UNSET_SOURCE_ORG}"

    def test_env_placeholder_substitution(self, tmp_path):
        (tmp_path / "migrator.yaml").write_text("export:\n  directory: exports/{env}\n")
        assert load_config(tmp_path, env="staging").get("export.directory") == "exports/staging"


class TestResolveConfig:
    def test_nested_lists(self, monkeypatch):
        monkeypatch.setenv("PATTERN", "Warning:")
        resolved = resolve_config({"cli": {"benign_stderr_patterns": ["${PATTERN}", 3]}})
        assert resolved == {"cli": {"benign_stderr_patterns": ["Warning:", 3]}}

    def test_fallback_when_unset(self, monkeypatch):
        monkeypatch.delenv("TARGET_ORG", raising=False)
        assert resolve_config({"target": "${TARGET_ORG:-uat}"}) == {"target": "uat"}

    def test_variable_wins_over_fallback(self, monkeypatch):
        monkeypatch.setenv("TARGET_ORG", "prod")
        assert resolve_config({"target": "${TARGET_ORG:-uat}"}) == {"target": "prod"}

    def test_unset_variable_is_kept_and_logged(self, monkeypatch, caplog):
        monkeypatch.delenv("MISSING_ORG", raising=False)
        with caplog.at_level(logging.WARNING, logger="sfmigrator.config"):
            resolved = resolve_config({"source": "${MISSING_ORG}"})
        assert resolved == {"source": "${MISSING_ORG}"}
        assert "MISSING_ORG is not set" in caplog.text


class TestMergeDict:
    def test_nested_merge(self):
        base = {"orgs": {"source": "dev", "target": "uat"}}
        _merge_dict(base, {"orgs": {"target": "prod"}})
        assert base == {"orgs": {"source": "dev", "target": "prod"}}

    def test_replace_non_dict_with_dict(self):
        base = {"logging": "INFO"}
        _merge_dict(base, {"logging": {"level": "DEBUG"}})
        assert base == {"logging": {"level": "DEBUG"}}


class TestMigratorSettings:
    def test_defaults(self, tmp_path):
        settings = MigratorSettings.from_config(Config({}), tmp_path)
        assert settings.cli_executable == "sf"
        assert settings.poll_policy.interval == 1.0
        assert settings.poll_policy.max_attempts is None
        assert settings.workspace_root == tmp_path.resolve()
        assert settings.exports_path == tmp_path.resolve() / "exports"

    def test_from_config(self, tmp_path):
        cfg = Config(
            {
                "orgs": {"source": "dev", "target": "uat"},
                "cli": {"executable": "sfdx", "benign_stderr_patterns": ["Warning:"], "max_output_bytes": 1024},
                "api": {"request_timeout": "30", "max_result_pages": 5},
                "polling": {"interval": 0.5, "max_attempts": 10},
                "workspace_root": "work",
                "export": {"directory": "out"},
                "logging": {"level": "DEBUG"},
            }
        )

        settings = MigratorSettings.from_config(cfg, tmp_path)

        assert (settings.source_org, settings.target_org) == ("dev", "uat")
        assert settings.cli_executable == "sfdx"
        assert settings.benign_stderr_patterns == ("Warning:",)
        assert settings.max_output_bytes == 1024
        assert settings.request_timeout == 30.0
        assert settings.max_result_pages == 5
        assert settings.poll_policy.max_attempts == 10
        assert settings.workspace_root == (tmp_path / "work").resolve()
        assert settings.exports_path == (tmp_path / "work" / "out").resolve()
        assert settings.logging == {"level": "DEBUG"}

    def test_absolute_workspace_root(self, tmp_path):
        settings = MigratorSettings.from_config(Config({"workspace_root": str(tmp_path)}), Path("/elsewhere"))
        assert settings.workspace_root == tmp_path.resolve()

    @pytest.mark.parametrize(
        "data,match",
        [
            ({"api": {"request_timeout": 0}}, "request_timeout"),
            ({"api": {"max_result_pages": 0}}, "max_result_pages"),
            ({"api": {"request_timeout": "soon"}}, "Invalid configuration value"),
            ({"cli": {"max_output_bytes": 0}}, "max_output_bytes"),
        ],
    )
    def test_invalid_values(self, tmp_path, data, match):
        with pytest.raises(ConfigurationError, match=match):
            MigratorSettings.from_config(Config(data), tmp_path)

    def test_invalid_poll_policy(self, tmp_path):
        settings = MigratorSettings.from_config(Config({"polling": {"max_attempts": 0}}), tmp_path)
        with pytest.raises(ConfigurationError, match="polling"):
            _ = settings.poll_policy
