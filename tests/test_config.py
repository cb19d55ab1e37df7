"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from meshsim.config import (
    CONFIG_TEMPLATE,
    DEFAULT_BASE_PATH,
    DEFAULTS,
    ENV_API_KEY,
    ENV_BASE_PATH,
    SimulationConfig,
    get_base_path,
    get_dotted,
    load_config_data,
    set_dotted,
)


class TestBasePath:

    def test_explicit_wins(self, tmp_path):
        with patch.dict(os.environ, {ENV_BASE_PATH: "/elsewhere"}):
            assert get_base_path(tmp_path) == tmp_path

    def test_env_var(self):
        with patch.dict(os.environ, {ENV_BASE_PATH: "/from/env"}):
            assert get_base_path() == Path("/from/env")

    def test_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert get_base_path() == DEFAULT_BASE_PATH


class TestDottedKeys:

    def test_get_nested(self):
        assert get_dotted(DEFAULTS, "delivery.min_delay") == 0.3
        assert get_dotted(DEFAULTS, "storage")["fallback"] is True

    def test_get_missing_raises(self):
        with pytest.raises(KeyError):
            get_dotted(DEFAULTS, "delivery.jitter")
        with pytest.raises(KeyError):
            get_dotted(DEFAULTS, "delivery.min_delay.extra")

    def test_set_creates_sections(self):
        data = {}
        set_dotted(data, "assistant.provider", "generative")
        assert data == {"assistant": {"provider": "generative"}}


class TestLoadConfig:

    def test_template_is_valid_and_matches_defaults(self):
        parsed = yaml.safe_load(CONFIG_TEMPLATE)
        for section, values in parsed.items():
            for key in values:
                assert key in DEFAULTS[section]

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config_data(tmp_path) == DEFAULTS

    def test_partial_override(self, tmp_path):
        (tmp_path / "config.yaml").write_text("delivery:\n  max_delay: 2.5\n")

        data = load_config_data(tmp_path)

        assert data["delivery"] == {"min_delay": 0.3, "max_delay": 2.5}
        assert data["storage"] == DEFAULTS["storage"]

    def test_non_mapping_rejected(self, tmp_path):
        (tmp_path / "config.yaml").write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config_data(tmp_path)


class TestSimulationConfig:

    def test_defaults_are_in_memory(self):
        config = SimulationConfig()
        assert config.db_path is None
        assert config.assistant_provider == "canned"

    def test_relative_db_path_resolved_under_base(self, tmp_path):
        config = SimulationConfig.load(tmp_path)

        assert config.base_path == tmp_path
        assert config.db_path == tmp_path / "network.sqlite"
        assert config.retry_attempts == 3
        assert config.min_delay == 0.3
        assert config.max_delay == 1.0

    def test_null_db_path_means_memory(self, tmp_path):
        (tmp_path / "config.yaml").write_text("storage:\n  db_path: null\n")
        assert SimulationConfig.load(tmp_path).db_path is None

    def test_api_key_from_environment(self, tmp_path):
        (tmp_path / "config.yaml").write_text("assistant:\n  api_key: from-file\n")

        with patch.dict(os.environ, {ENV_API_KEY: "from-env"}):
            assert SimulationConfig.load(tmp_path).assistant_api_key == "from-env"

        with patch.dict(os.environ, {}, clear=True):
            assert SimulationConfig.load(tmp_path).assistant_api_key == "from-file"

    def test_api_key_is_a_known_setting(self, tmp_path):
        assert get_dotted(DEFAULTS, "assistant.api_key") is None

        with patch.dict(os.environ, {}, clear=True):
            assert SimulationConfig.load(tmp_path).assistant_api_key is None
