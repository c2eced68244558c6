"""
Unit tests for config.loaders module.

Tests cover:
- Path resolution (relative vs absolute, VOICEDESK_CONFIG)
- YAML loading with environment variable expansion
- Local overlay merging
- Error handling (missing files, invalid YAML)
"""

import os

import pytest
import yaml

from voicedesk.config.loaders import (
    expand_env_refs,
    load_config_data,
    load_yaml_with_env_expansion,
    local_overlay_path,
    resolve_config_path,
)


class TestResolveConfigPath:

    def test_absolute_path_unchanged(self):
        abs_path = "/etc/voicedesk/voicedesk.yaml"
        assert resolve_config_path(abs_path) == abs_path

    def test_relative_path_resolved_against_project_root(self):
        rel_path = "config/voicedesk.yaml"
        result = resolve_config_path(rel_path)

        assert os.path.isabs(result)
        assert result.endswith(rel_path)
        assert os.path.exists(result)


class TestLoadYamlWithEnvExpansion:

    def test_env_var_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_SINK_HOST", "tickets.internal")
        monkeypatch.setenv("TEST_PORT", "8080")
        config_file = tmp_path / "test.yaml"
        config_file.write_text(
            "server:\n"
            "  port: ${TEST_PORT}\n"
            "ticket:\n"
            "  url: https://${TEST_SINK_HOST}/tickets\n"
        )

        result = load_yaml_with_env_expansion(str(config_file))

        # YAML parser converts numeric strings to int
        assert result['server']['port'] == 8080
        assert result['ticket']['url'] == "https://tickets.internal/tickets"

    def test_missing_env_var_left_unchanged(self, tmp_path, monkeypatch):
        monkeypatch.delenv("VOICEDESK_UNSET_VAR", raising=False)
        config_file = tmp_path / "test.yaml"
        config_file.write_text("missing: ${VOICEDESK_UNSET_VAR}\n")

        result = load_yaml_with_env_expansion(str(config_file))

        assert result['missing'] == '${VOICEDESK_UNSET_VAR}'

    def test_file_not_found_raises_error(self):
        with pytest.raises(FileNotFoundError) as exc_info:
            load_yaml_with_env_expansion("/nonexistent/path/voicedesk.yaml")
        assert "not found" in str(exc_info.value).lower()

    def test_invalid_yaml_raises_error(self, tmp_path):
        config_file = tmp_path / "invalid.yaml"
        config_file.write_text("key1: value1\n  key2: value2\n    key3: value3\n")

        with pytest.raises(yaml.YAMLError) as exc_info:
            load_yaml_with_env_expansion(str(config_file))
        assert "parsing" in str(exc_info.value).lower()

    def test_empty_file_returns_empty_dict(self, tmp_path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        assert load_yaml_with_env_expansion(str(config_file)) == {}

    def test_top_level_list_rejected(self, tmp_path):
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(yaml.YAMLError):
            load_yaml_with_env_expansion(str(config_file))


class TestExpandEnvRefs:

    def test_fallback_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("VOICEDESK_UNSET_VAR", raising=False)
        assert expand_env_refs("level: ${VOICEDESK_UNSET_VAR:-info}") == "level: info"

    def test_fallback_used_when_empty(self, monkeypatch):
        monkeypatch.setenv("VOICEDESK_EMPTY_VAR", "")
        assert expand_env_refs("${VOICEDESK_EMPTY_VAR:-es}") == "es"

    def test_value_wins_over_fallback(self, monkeypatch):
        monkeypatch.setenv("VOICEDESK_SET_VAR", "debug")
        assert expand_env_refs("${VOICEDESK_SET_VAR:-info}") == "debug"

    def test_bare_dollar_untouched(self):
        assert expand_env_refs("price: $5") == "price: $5"


class TestConfigSelection:

    def test_env_selects_config_file(self, clean_env, tmp_path):
        config_file = tmp_path / "alt.yaml"
        clean_env.setenv("VOICEDESK_CONFIG", str(config_file))
        assert resolve_config_path() == str(config_file)

    def test_default_without_env(self, clean_env):
        assert resolve_config_path().endswith("config/voicedesk.yaml")

    def test_overlay_path(self):
        assert local_overlay_path("/etc/voicedesk/voicedesk.yaml") == "/etc/voicedesk/voicedesk.local.yaml"

    def test_local_overlay_deep_merged(self, tmp_path):
        base = tmp_path / "voicedesk.yaml"
        base.write_text(
            "turn:\n"
            "  silence_threshold_ms: 700\n"
            "dialogue:\n"
            "  flow: identify_reason\n"
            "  farewell: Adiós\n"
        )
        (tmp_path / "voicedesk.local.yaml").write_text("dialogue:\n  flow: reason_only\n")

        result = load_config_data(str(base))

        assert result['dialogue'] == {'flow': 'reason_only', 'farewell': 'Adiós'}
        assert result['turn']['silence_threshold_ms'] == 700

    def test_no_overlay(self, tmp_path):
        base = tmp_path / "voicedesk.yaml"
        base.write_text("turn:\n  silence_threshold_ms: 650\n")
        assert load_config_data(str(base)) == {'turn': {'silence_threshold_ms': 650}}
