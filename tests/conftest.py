"""Shared test fixtures for courseflow."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from courseflow.github.client import Branch
from courseflow.model import Course, EnvironmentFile, PullRequest, User
from courseflow.storage.db import get_connection
from courseflow.storage.repository import Repository


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db_conn(db_path: Path) -> sqlite3.Connection:
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def repo(db_conn: sqlite3.Connection) -> Repository:
    return Repository(db_conn)


@pytest.fixture
def owner(repo: Repository) -> User:
    repo.create_user("teacher", github_id="teacher-gh", github_token="ghp_teacher")
    return repo.set_credentials("teacher", ci_token="travis-token", quality_token="codacy-token")


@pytest.fixture
def course(repo: Repository, owner: User) -> Course:
    return repo.create_course(
        owner,
        "algorithms",
        language="java",
        testing_language="java",
        testing_framework="junit",
        task_branches=["task-1", "task-2"],
        description="Algorithms and data structures",
    )


@pytest.fixture
def populated_course(repo: Repository, course: Course) -> Course:
    """Course with two students; alice has a commit on task-1."""
    alice = repo.get_or_create_student(course.id, "alice")
    repo.get_or_create_student(course.id, "bob")
    task_1 = next(s for s in alice.solutions if s.task == "task-1")
    repo.add_commit(task_1.id, "alice-head")
    return repo.get_course_by_id(course.id)


@pytest.fixture
def make_pull_request():
    def make(
        author: str,
        branch: str,
        merge_sha: str | None = None,
        head_sha: str | None = None,
    ) -> PullRequest:
        return PullRequest(
            author_id=author,
            receiver_owner="teacher-gh",
            receiver_repo="algorithms",
            base_branch=branch,
            last_commit_sha=head_sha or f"{author}-head",
            is_open=True,
            number=1,
            merge_commit_sha=merge_sha,
        )

    return make


@pytest.fixture
def make_branch():
    def make(name: str, files: dict[str, bytes], owner: str = "teacher-gh") -> Branch:
        loaded = [EnvironmentFile(path=path, content=content) for path, content in files.items()]
        return Branch(name=name, owner=owner, repo="algorithms", _loader=lambda: loaded)

    return make


@pytest.fixture
def git() -> MagicMock:
    client = MagicMock()
    client.open_pull_requests.return_value = []
    client.branches.return_value = []
    return client


@pytest.fixture
def git_factory(git: MagicMock) -> MagicMock:
    return MagicMock(return_value=git)


@pytest.fixture
def no_sleep() -> MagicMock:
    return MagicMock()


@pytest.fixture
def april() -> datetime:
    return datetime(2024, 4, 1, 12, 0, 0)
