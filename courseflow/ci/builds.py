"""Decoding of CI build records, from webhooks and from the builds API."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from courseflow.errors import PayloadParseError
from courseflow.model import CiBuild, CiBuildStatus, CiEventType

logger = logging.getLogger(__name__)

_STATUSES = {
    "passed": CiBuildStatus.SUCCEEDED,
    "fixed": CiBuildStatus.SUCCEEDED,
    "succeeded": CiBuildStatus.SUCCEEDED,
    "failed": CiBuildStatus.FAILED,
    "broken": CiBuildStatus.FAILED,
    "still failing": CiBuildStatus.FAILED,
}


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp into a naive UTC datetime.

    Raises ValueError for anything but an ISO-8601 string or an empty value.
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"Timestamp {value!r} is not a string")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_status(value: str | None) -> CiBuildStatus:
    if not isinstance(value, str):
        return CiBuildStatus.OTHER
    return _STATUSES.get(value.lower(), CiBuildStatus.OTHER)


def parse_event_type(value: str | None) -> CiEventType | None:
    if not isinstance(value, str):
        return None
    try:
        return CiEventType(value.lower())
    except ValueError:
        return None


def _optional_str(record: dict, key: str) -> str | None:
    value = record.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"field {key} is {type(value).__name__}, not a string")
    return value


def parse_ci_webhook(body: str | bytes) -> CiBuild | None:
    """Decode a CI build notification.

    Expected shape::

        {"commit_sha": "...", "status": "passed", "finished_at": "...|null",
         "event_type": "push|pull_request",
         "repository": {"name": "...", "owner_name": "..."}}

    A payload whose fields have unexpected types decodes to None.
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PayloadParseError(f"CI build payload is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        return None

    event_type = parse_event_type(payload.get("event_type"))
    if event_type is None:
        logger.debug(f"Ignoring CI event of type {payload.get('event_type')!r}")
        return None

    sha = payload.get("commit_sha")
    if not sha or not isinstance(sha, str):
        logger.warning("CI build payload has no commit sha, ignoring it")
        return None

    repository = payload.get("repository") or {}
    if not isinstance(repository, dict):
        logger.warning(f"CI build {sha} has malformed repository, ignoring it")
        return None

    try:
        status = _optional_str(payload, "status")
        finished_at = parse_timestamp(payload.get("finished_at"))
        owner = _optional_str(repository, "owner_name")
        name = _optional_str(repository, "name")
    except ValueError as e:
        logger.warning(f"CI build {sha} is malformed ({e}), ignoring it")
        return None

    return CiBuild(
        commit_sha=sha,
        status=parse_status(status),
        finished_at=finished_at,
        event_type=event_type,
        repository_owner=owner,
        repository_name=name,
    )


def build_from_api(record: dict) -> CiBuild | None:
    """Convert a build of the Travis v3 ``/builds`` listing.

    Records that can't be decoded are skipped with a warning.
    """
    if not isinstance(record, dict):
        return None
    event_type = parse_event_type(record.get("event_type"))
    commit = record.get("commit")
    sha = commit.get("sha") if isinstance(commit, dict) else None
    if event_type is None or not sha or not isinstance(sha, str):
        return None
    try:
        finished_at = parse_timestamp(record.get("finished_at"))
    except ValueError as e:
        logger.warning(f"Travis build {sha} has malformed finish time, skipping it: {e}")
        return None
    return CiBuild(
        commit_sha=sha,
        status=parse_status(record.get("state")),
        finished_at=finished_at,
        event_type=event_type,
    )
