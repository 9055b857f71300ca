"""Tests for courseflow.config."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

from courseflow.config import (
    DEFAULT_DB_PATH,
    DEFAULT_MOSS_HOST,
    DEFAULT_MOSS_PORT,
    DEFAULT_TRAVIS_API_URL,
    Config,
)

ENV_KEYS = [
    "COURSEFLOW_GITHUB_TOKEN",
    "COURSEFLOW_DB_PATH",
    "COURSEFLOW_TRAVIS_API_URL",
    "COURSEFLOW_CODACY_API_URL",
    "COURSEFLOW_CODACY_TOKEN",
    "COURSEFLOW_MOSS_USER_ID",
    "COURSEFLOW_MOSS_HOST",
    "COURSEFLOW_MOSS_PORT",
    "COURSEFLOW_WEBHOOK_URL",
    "COURSEFLOW_POLL_ATTEMPTS",
    "COURSEFLOW_POLL_INTERVAL",
    "COURSEFLOW_TOKEN_SETTLE_DELAY",
    "COURSEFLOW_SYNC_DELAY",
    "COURSEFLOW_PLAGIARISM_WORKERS",
]


class TestConfigDefaults:
    def test_default_values(self):
        config = Config()
        assert config.github_token == ""
        assert config.db_path == DEFAULT_DB_PATH
        assert config.travis_api_url == DEFAULT_TRAVIS_API_URL
        assert config.moss_host == DEFAULT_MOSS_HOST
        assert config.moss_port == DEFAULT_MOSS_PORT
        assert config.poll_attempts == 60
        assert config.poll_interval == 5.0
        assert config.token_settle_delay == 10.0
        assert config.sync_delay == 60.0
        assert config.plagiarism_workers == 4


class TestConfigLoad:
    def test_load_from_env(self):
        env = {
            "COURSEFLOW_GITHUB_TOKEN": "ghp_test123",
            "COURSEFLOW_DB_PATH": "/tmp/courses.db",
            "COURSEFLOW_MOSS_USER_ID": "987654",
            "COURSEFLOW_MOSS_PORT": "7000",
            "COURSEFLOW_POLL_ATTEMPTS": "3",
            "COURSEFLOW_POLL_INTERVAL": "0.5",
            "COURSEFLOW_PLAGIARISM_WORKERS": "8",
            "COURSEFLOW_WEBHOOK_URL": "https://hooks.example.org/github",
        }
        with patch.dict(os.environ, env, clear=False):
            config = Config.load()
        assert config.github_token == "ghp_test123"
        assert config.db_path == Path("/tmp/courses.db")
        assert config.moss_user_id == "987654"
        assert config.moss_port == 7000
        assert config.poll_attempts == 3
        assert config.poll_interval == 0.5
        assert config.plagiarism_workers == 8
        assert config.webhook_url == "https://hooks.example.org/github"

    def test_load_defaults_when_env_empty(self):
        cleaned = {k: v for k, v in os.environ.items() if k not in ENV_KEYS}
        with patch.dict(os.environ, cleaned, clear=True):
            config = Config.load()
        assert config == Config()


class TestConfigValidate:
    def test_validate_all_missing(self):
        issues = Config().validate()
        assert len(issues) == 2
        assert any("GitHub token" in issue for issue in issues)
        assert any("Moss user id" in issue for issue in issues)

    def test_validate_complete(self):
        config = Config(github_token="ghp_x", moss_user_id="1")
        assert config.validate() == []

    def test_validate_rejects_non_positive_bounds(self):
        config = Config(github_token="ghp_x", moss_user_id="1", poll_attempts=0, plagiarism_workers=0)
        issues = config.validate()
        assert len(issues) == 2
        assert any("COURSEFLOW_POLL_ATTEMPTS" in issue for issue in issues)
        assert any("COURSEFLOW_PLAGIARISM_WORKERS" in issue for issue in issues)
