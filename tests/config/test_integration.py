"""
Integration tests for config loading.

Tests cover:
- Loading the shipped YAML configuration
- Environment overrides flowing into AppConfig
- Production validation errors and warnings
"""

import pytest
from pydantic import ValidationError

from voicedesk.config import AppConfig, load_config, validate_production_config


class TestConfigLoading:

    def test_load_shipped_config(self, clean_env):
        clean_env.setenv("DEEPGRAM_API_KEY", "dg-test")
        clean_env.setenv("OPENAI_API_KEY", "sk-test")
        clean_env.setenv("ELEVENLABS_API_KEY", "el-test")

        config = load_config("config/voicedesk.yaml")

        assert isinstance(config, AppConfig)
        assert config.server.port == 3000
        assert config.server.media_path == "/ws-media"
        assert config.turn.silence_threshold_ms == 700
        assert config.playback.frame_bytes == 160
        assert config.providers.openai.api_key == "sk-test"
        assert config.ticket.url is None

    def test_env_overrides_reach_app_config(self, clean_env):
        clean_env.setenv("PORT", "3100")
        clean_env.setenv("SILENCE_THRESHOLD_MS", "850")
        clean_env.setenv("TICKET_SINK_URL", "https://tickets.test/api")

        config = load_config("config/voicedesk.yaml")

        assert config.server.port == 3100
        assert config.turn.silence_threshold_ms == 850
        assert config.ticket.url == "https://tickets.test/api"

    def test_unknown_flow_rejected(self, clean_env):
        clean_env.setenv("DIALOGUE_FLOW", "three_questions")
        with pytest.raises(ValidationError):
            load_config("config/voicedesk.yaml")

    def test_default_category_must_be_in_vocabulary(self):
        with pytest.raises(ValidationError):
            AppConfig(dialogue={"categories": ["payroll"], "default_category": "other"})


class TestValidateProductionConfig:

    def test_missing_keys_are_errors(self):
        errors, warnings = validate_production_config(AppConfig())

        assert any("DEEPGRAM_API_KEY" in e for e in errors)
        assert any("OPENAI_API_KEY" in e for e in errors)
        assert any("ELEVENLABS_API_KEY" in e for e in errors)
        assert any("TICKET_SINK_URL" in w for w in warnings)

    def test_complete_config_passes(self, clean_env):
        config = AppConfig(
            providers={
                "deepgram": {"api_key": "dg"},
                "openai": {"api_key": "sk"},
                "elevenlabs": {"api_key": "el"},
            },
            ticket={"url": "https://tickets.test/api"},
        )
        errors, warnings = validate_production_config(config)
        assert errors == []
        assert warnings == []

    def test_odd_threshold_warns(self, clean_env):
        config = AppConfig(turn={"silence_threshold_ms": 50}, ticket={"url": "https://t.test"})
        _errors, warnings = validate_production_config(config)
        assert any("Silence threshold" in w for w in warnings)
