"""Decoding of GitHub webhook deliveries.

Only ``pull_request`` events are understood. The rules are:

* body is not JSON -> PayloadParseError
* event type is not handled -> None
* JSON lacks a field we need -> None (logged)

The webhook body does not carry commit shas, so the last commit of the pull
request is fetched through ``load_commits``.
"""

from __future__ import annotations

import json
import logging
from typing import Callable

from courseflow.errors import PayloadParseError
from courseflow.model import PullRequest

logger = logging.getLogger(__name__)

PULL_REQUEST_EVENT = "pull_request"

# Actions after which the pull request is still open
OPEN_ACTIONS = {"opened", "reopened", "synchronize", "edited", "ready_for_review"}

CommitsLoader = Callable[[str, str, "int | None"], list[str]]


def parse_github_event(
    body: str | bytes,
    event_type: str,
    load_commits: CommitsLoader,
) -> PullRequest | None:
    """Decode a GitHub delivery identified by its ``X-GitHub-Event`` header."""
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PayloadParseError(f"GitHub {event_type} payload is not valid JSON: {e}") from e

    if event_type != PULL_REQUEST_EVENT:
        logger.debug(f"Ignoring GitHub {event_type} event")
        return None

    return _parse_pull_request(payload, load_commits)


def _parse_pull_request(payload: object, load_commits: CommitsLoader) -> PullRequest | None:
    try:
        action = payload["action"]
        pull_request = payload["pull_request"]
        author = pull_request["user"]["login"]
        base_branch = pull_request["base"]["ref"]
        repo_name = payload["repository"]["name"]
        repo_owner = payload["repository"]["owner"]["login"]
    except (KeyError, TypeError) as e:
        logger.warning(f"Pull request payload misses field {e}, ignoring it")
        return None

    fields = {
        "action": action,
        "user.login": author,
        "base.ref": base_branch,
        "repository.name": repo_name,
        "repository.owner.login": repo_owner,
    }
    invalid = [key for key, value in fields.items() if not isinstance(value, str) or not value]
    if invalid:
        logger.warning(f"Pull request payload has empty or non-string {', '.join(invalid)}, ignoring it")
        return None

    number = payload.get("number", pull_request.get("number"))
    if isinstance(number, bool) or not isinstance(number, int):
        number = None
    commits = load_commits(repo_owner, repo_name, number)
    merge_commit_sha = pull_request.get("merge_commit_sha")
    if not isinstance(merge_commit_sha, str):
        merge_commit_sha = None

    return PullRequest(
        author_id=author,
        receiver_owner=repo_owner,
        receiver_repo=repo_name,
        base_branch=base_branch,
        last_commit_sha=commits[-1] if commits else None,
        is_open=action in OPEN_ACTIONS,
        number=number,
        merge_commit_sha=merge_commit_sha,
    )
