"""Tests for courseflow.github.webhook."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from courseflow.errors import PayloadParseError
from courseflow.github.webhook import parse_github_event


def pull_request_payload(action: str = "opened", **overrides) -> dict:
    payload = {
        "action": action,
        "number": 7,
        "pull_request": {
            "number": 7,
            "user": {"login": "alice"},
            "base": {"ref": "task-2"},
            "merge_commit_sha": "m1",
        },
        "repository": {"name": "algorithms", "owner": {"login": "teacher-gh"}},
    }
    payload.update(overrides)
    return payload


class TestParsePullRequest:
    def test_opened_pull_request(self):
        load_commits = MagicMock(return_value=["c1", "c2"])

        pr = parse_github_event(json.dumps(pull_request_payload()), "pull_request", load_commits)

        assert pr is not None
        assert pr.is_open is True
        assert pr.author_id == "alice"
        assert pr.base_branch == "task-2"
        assert pr.last_commit_sha == "c2"
        assert pr.receiver_owner == "teacher-gh"
        assert pr.receiver_repo == "algorithms"
        assert pr.merge_commit_sha == "m1"
        load_commits.assert_called_once_with("teacher-gh", "algorithms", 7)

    def test_synchronize_keeps_pull_request_open(self):
        pr = parse_github_event(
            json.dumps(pull_request_payload("synchronize")), "pull_request", lambda *a: ["c1"]
        )
        assert pr.is_open is True

    def test_closed_pull_request(self):
        pr = parse_github_event(
            json.dumps(pull_request_payload("closed")), "pull_request", lambda *a: ["c1"]
        )
        assert pr.is_open is False

    def test_no_commits(self):
        pr = parse_github_event(json.dumps(pull_request_payload()), "pull_request", lambda *a: [])
        assert pr.last_commit_sha is None

    def test_accepts_bytes(self):
        body = json.dumps(pull_request_payload()).encode()
        assert parse_github_event(body, "pull_request", lambda *a: ["c1"]) is not None


class TestMalformedPayloads:
    def test_invalid_json_raises(self):
        with pytest.raises(PayloadParseError):
            parse_github_event("{not json", "pull_request", MagicMock())

    def test_unhandled_event_is_ignored(self):
        load_commits = MagicMock()
        assert parse_github_event(json.dumps({"ref": "x"}), "push", load_commits) is None
        load_commits.assert_not_called()

    def test_missing_field_is_ignored(self):
        payload = pull_request_payload()
        del payload["pull_request"]["base"]
        load_commits = MagicMock()

        assert parse_github_event(json.dumps(payload), "pull_request", load_commits) is None
        load_commits.assert_not_called()

    def test_non_object_payload_is_ignored(self):
        assert parse_github_event("[1, 2]", "pull_request", MagicMock()) is None

    @pytest.mark.parametrize(
        "field, value",
        [
            ("user", {"login": None}),
            ("base", {"ref": None}),
            ("base", {"ref": ""}),
            ("user", {"login": 42}),
        ],
    )
    def test_empty_or_mistyped_values_are_ignored(self, field, value):
        payload = pull_request_payload()
        payload["pull_request"][field] = value
        load_commits = MagicMock(return_value=["c1"])

        assert parse_github_event(json.dumps(payload), "pull_request", load_commits) is None
        load_commits.assert_not_called()

    def test_mistyped_repository_is_ignored(self):
        payload = pull_request_payload(repository={"name": ["algorithms"], "owner": {"login": "teacher-gh"}})
        load_commits = MagicMock()

        assert parse_github_event(json.dumps(payload), "pull_request", load_commits) is None
        load_commits.assert_not_called()

    def test_mistyped_number_loads_no_commits(self):
        payload = pull_request_payload(number="7")
        payload["pull_request"]["number"] = "7"
        load_commits = MagicMock(return_value=[])

        pr = parse_github_event(json.dumps(payload), "pull_request", load_commits)

        load_commits.assert_called_once_with("teacher-gh", "algorithms", None)
        assert pr.number is None
