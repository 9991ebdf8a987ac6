"""Tests for config file parsing, env overrides and secret handling."""

import json
import os
from unittest.mock import patch

import pytest

from signalhub.common import config as config_module
from signalhub.common.config import load_config, resolve_embedding_model, save_config


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.json"
    with patch.object(config_module, "CONFIG_DIR", tmp_path), \
         patch.object(config_module, "CONFIG_PATH", path), \
         patch.object(config_module, "load_dotenv"):
        yield path


def write(path, data):
    path.write_text(json.dumps(data))


class TestLoadConfig:
    def test_defaults_without_file(self, config_path):
        with patch.dict(os.environ, {}, clear=True):
            config = load_config()
        assert config.classification.use_semantic_classification is False
        assert config.classification.min_similarity_percent == 60.0
        assert config.triage.bug_high == 0.70
        assert config.learning.max_diff_chars == 3000
        assert config.server.port == 8090

    def test_file_values(self, config_path):
        write(config_path, {
            "classification": {"embedding_model": "text-embedding-3-large", "max_group_size": 3},
            "github": {"tokens": ["a", ""], "installation_ids": [12]},
            "triage": {"bug": 0.6},
            "learning": {"subsystem_patterns": {"billing": ["billing/"]}},
        })
        with patch.dict(os.environ, {}, clear=True):
            config = load_config()

        assert config.classification.embedding_dimensions == 3072
        assert config.classification.max_group_size == 3
        assert config.github.tokens == ["a"]
        assert config.github.installation_ids == ["12"]
        assert config.triage.bug == 0.6
        assert config.learning.subsystem_patterns == {"billing": ["billing/"]}

    def test_broken_file_falls_back_to_defaults(self, config_path, caplog):
        config_path.write_text("{not json")
        with patch.dict(os.environ, {}, clear=True):
            config = load_config()
        assert config.classification.top_k == 5
        assert "Failed to load config file" in caplog.text

    def test_key_enables_semantic_mode(self, config_path):
        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}, clear=True):
            config = load_config()
        assert config.classification.use_semantic_classification is True

    def test_semantic_flag_can_disable(self, config_path):
        env = {"OPENAI_API_KEY": "sk-test", "USE_SEMANTIC_CLASSIFICATION": "false"}
        with patch.dict(os.environ, env, clear=True):
            config = load_config()
        assert config.classification.use_semantic_classification is False

    def test_semantic_flag_without_key_stays_off(self, config_path):
        with patch.dict(os.environ, {"USE_SEMANTIC_CLASSIFICATION": "true"}, clear=True):
            config = load_config()
        assert config.classification.use_semantic_classification is False

    def test_env_overrides(self, config_path):
        env = {
            "GITHUB_TOKEN": "t1, t2,",
            "GITHUB_APP_INSTALLATION_ID": "1,2",
            "OPENAI_EMBEDDING_MODEL": "text-embedding-3-large",
            "SIGNALHUB_PORT": "9000",
        }
        with patch.dict(os.environ, env, clear=True):
            config = load_config()
        assert config.github.tokens == ["t1", "t2"]
        assert config.github.installation_ids == ["1", "2"]
        assert config.classification.embedding_dimensions == 3072
        assert config.server.port == 9000


class TestSaveConfig:
    def test_env_secrets_not_persisted(self, config_path):
        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-env", "GITHUB_TOKEN": "ghp_env"}, clear=True):
            config = load_config()
        save_config(config)

        saved = json.loads(config_path.read_text())
        assert saved["classification"]["openai_api_key"] == ""
        assert saved["github"]["tokens"] == []
        assert oct(config_path.stat().st_mode & 0o777) == "0o600"

    def test_file_secrets_round_trip(self, config_path):
        write(config_path, {"classification": {"openai_api_key": "sk-file"}})
        with patch.dict(os.environ, {}, clear=True):
            save_config(load_config())
            reloaded = load_config()
        assert reloaded.classification.openai_api_key == "sk-file"


def test_unknown_model_falls_back(caplog):
    assert resolve_embedding_model("not-a-model") == "text-embedding-3-small"
    assert resolve_embedding_model(None) == "text-embedding-3-small"
    assert "Unknown embedding model" in caplog.text
