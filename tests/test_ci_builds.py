"""Tests for courseflow.ci.builds."""

from __future__ import annotations

import json
from datetime import datetime

import pytest

from courseflow.ci.builds import build_from_api, parse_ci_webhook, parse_status, parse_timestamp
from courseflow.errors import PayloadParseError
from courseflow.model import CiBuildStatus, CiEventType


class TestParseTimestamp:
    def test_utc_suffix(self):
        assert parse_timestamp("2024-04-01T12:00:00Z") == datetime(2024, 4, 1, 12, 0, 0)

    def test_offset_is_normalized_to_utc(self):
        assert parse_timestamp("2024-04-01T14:00:00+02:00") == datetime(2024, 4, 1, 12, 0, 0)

    def test_empty(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


class TestParseStatus:
    @pytest.mark.parametrize("value", ["passed", "fixed", "Succeeded"])
    def test_succeeded(self, value):
        assert parse_status(value) == CiBuildStatus.SUCCEEDED

    @pytest.mark.parametrize("value", ["failed", "broken", "still failing"])
    def test_failed(self, value):
        assert parse_status(value) == CiBuildStatus.FAILED

    @pytest.mark.parametrize("value", ["started", "errored", "canceled", None])
    def test_other(self, value):
        assert parse_status(value) == CiBuildStatus.OTHER


class TestParseCiWebhook:
    def test_finished_pull_request_build(self):
        body = json.dumps({
            "commit_sha": "m1",
            "status": "passed",
            "finished_at": "2024-04-01T12:00:00Z",
            "event_type": "pull_request",
            "repository": {"name": "algorithms", "owner_name": "teacher-gh"},
        })

        build = parse_ci_webhook(body)

        assert build.commit_sha == "m1"
        assert build.status == CiBuildStatus.SUCCEEDED
        assert build.finished_at == datetime(2024, 4, 1, 12, 0, 0)
        assert build.event_type == CiEventType.PULL_REQUEST
        assert build.repository_owner == "teacher-gh"
        assert build.repository_name == "algorithms"

    def test_in_progress_build_has_no_finish_time(self):
        body = json.dumps({
            "commit_sha": "m1",
            "status": "started",
            "finished_at": None,
            "event_type": "push",
        })

        build = parse_ci_webhook(body)

        assert build.finished_at is None
        assert build.status == CiBuildStatus.OTHER
        assert build.event_type == CiEventType.PUSH
        assert build.repository_name is None

    def test_invalid_json_raises(self):
        with pytest.raises(PayloadParseError):
            parse_ci_webhook("not json")

    def test_unknown_event_type_is_ignored(self):
        assert parse_ci_webhook(json.dumps({"commit_sha": "m1", "event_type": "cron"})) is None

    def test_missing_sha_is_ignored(self):
        assert parse_ci_webhook(json.dumps({"event_type": "push"})) is None

    def test_malformed_time_is_ignored(self):
        body = json.dumps({"commit_sha": "m1", "event_type": "push", "finished_at": "yesterday"})
        assert parse_ci_webhook(body) is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"finished_at": 1700000000},
            {"status": 1},
            {"event_type": 2},
            {"repository": "teacher-gh/algorithms"},
            {"repository": {"name": 5, "owner_name": "teacher-gh"}},
            {"commit_sha": ["m1"]},
        ],
    )
    def test_mistyped_fields_are_ignored(self, overrides):
        payload = {
            "commit_sha": "m1",
            "status": "passed",
            "finished_at": "2024-04-01T12:00:00Z",
            "event_type": "pull_request",
            "repository": {"name": "algorithms", "owner_name": "teacher-gh"},
        }
        payload.update(overrides)

        assert parse_ci_webhook(json.dumps(payload)) is None


class TestBuildFromApi:
    def test_travis_v3_record(self):
        build = build_from_api({
            "state": "failed",
            "finished_at": "2024-04-01T12:00:00Z",
            "event_type": "pull_request",
            "commit": {"sha": "m1"},
        })
        assert build.status == CiBuildStatus.FAILED
        assert build.commit_sha == "m1"

    def test_record_without_commit(self):
        assert build_from_api({"state": "passed", "event_type": "push"}) is None

    @pytest.mark.parametrize("finished_at", ["yesterday", 1700000000])
    def test_record_with_malformed_finish_time_is_skipped(self, finished_at):
        record = {
            "state": "passed",
            "finished_at": finished_at,
            "event_type": "pull_request",
            "commit": {"sha": "m1"},
        }
        assert build_from_api(record) is None

    def test_record_with_mistyped_commit(self):
        assert build_from_api({"state": "passed", "event_type": "push", "commit": "m1"}) is None
