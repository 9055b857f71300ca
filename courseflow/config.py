"""Configuration loading for courseflow.

Config sources (in priority order):
1. Explicit arguments passed to functions
2. Environment variables (COURSEFLOW_GITHUB_TOKEN, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DB_PATH = Path("courseflow.db")
DEFAULT_TRAVIS_API_URL = "https://api.travis-ci.org"
DEFAULT_CODACY_API_URL = "https://api.codacy.com/2.0"
DEFAULT_MOSS_HOST = "moss.stanford.edu"
DEFAULT_MOSS_PORT = 7690


@dataclass
class Config:
    github_token: str = ""
    db_path: Path = DEFAULT_DB_PATH
    travis_api_url: str = DEFAULT_TRAVIS_API_URL
    codacy_api_url: str = DEFAULT_CODACY_API_URL
    codacy_token: str = ""
    moss_user_id: str = ""
    moss_host: str = DEFAULT_MOSS_HOST
    moss_port: int = DEFAULT_MOSS_PORT
    webhook_url: str = ""  # where GitHub should deliver pull request events
    poll_attempts: int = 60
    poll_interval: float = 5.0  # seconds
    token_settle_delay: float = 10.0  # seconds, Travis schedules a sync after token issue
    sync_delay: float = 60.0  # seconds, keeps Travis syncs from overlapping
    plagiarism_workers: int = 4

    @classmethod
    def load(cls) -> Config:
        return cls(
            github_token=os.getenv("COURSEFLOW_GITHUB_TOKEN", ""),
            db_path=Path(os.getenv("COURSEFLOW_DB_PATH", str(DEFAULT_DB_PATH))),
            travis_api_url=os.getenv("COURSEFLOW_TRAVIS_API_URL", DEFAULT_TRAVIS_API_URL),
            codacy_api_url=os.getenv("COURSEFLOW_CODACY_API_URL", DEFAULT_CODACY_API_URL),
            codacy_token=os.getenv("COURSEFLOW_CODACY_TOKEN", ""),
            moss_user_id=os.getenv("COURSEFLOW_MOSS_USER_ID", ""),
            moss_host=os.getenv("COURSEFLOW_MOSS_HOST", DEFAULT_MOSS_HOST),
            moss_port=int(os.getenv("COURSEFLOW_MOSS_PORT", str(DEFAULT_MOSS_PORT))),
            webhook_url=os.getenv("COURSEFLOW_WEBHOOK_URL", ""),
            poll_attempts=int(os.getenv("COURSEFLOW_POLL_ATTEMPTS", "60")),
            poll_interval=float(os.getenv("COURSEFLOW_POLL_INTERVAL", "5.0")),
            token_settle_delay=float(os.getenv("COURSEFLOW_TOKEN_SETTLE_DELAY", "10.0")),
            sync_delay=float(os.getenv("COURSEFLOW_SYNC_DELAY", "60.0")),
            plagiarism_workers=int(os.getenv("COURSEFLOW_PLAGIARISM_WORKERS", "4")),
        )

    def validate(self) -> list[str]:
        """Return a list of missing config issues."""
        issues = []
        if not self.github_token:
            issues.append("GitHub token not set (COURSEFLOW_GITHUB_TOKEN)")
        if not self.moss_user_id:
            issues.append("Moss user id not set (COURSEFLOW_MOSS_USER_ID)")
        if self.poll_attempts < 1:
            issues.append("Poll attempts must be positive (COURSEFLOW_POLL_ATTEMPTS)")
        if self.plagiarism_workers < 1:
            issues.append("Plagiarism workers must be positive (COURSEFLOW_PLAGIARISM_WORKERS)")
        return issues
