"""Travis CI integration: account bootstrap, repository activation and
build-result reconciliation.

Activation walks a per-user state machine::

    NO_TOKEN -> TOKEN_ACQUIRED -> SYNC_TRIGGERED -> SYNCED -> REPO_ACTIVATED

Travis only learns about new GitHub repositories through an account sync,
and it batches sync requests, so activation waits a fixed delay before
triggering the sync and then polls until both the sync and the repository
are visible. Every poll is bounded.

Reconciliation turns finished pull-request builds into BuildReports. A
report is appended only when the newest qualifying build finished strictly
after the solution's last report, so repeated refreshes over the same
upstream data are no-ops.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable

from courseflow.ci.client import TravisClient
from courseflow.errors import ConfigurationError, DataConsistencyError
from courseflow.github.client import GitHubClient
from courseflow.locking import KeyedLock
from courseflow.model import (
    CiBuild,
    CiBuildStatus,
    CiEventType,
    Course,
    PullRequest,
    ServiceTag,
    Solution,
    User,
)
from courseflow.polling import perform_after, retry_until
from courseflow.storage.repository import Repository

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {CiBuildStatus.SUCCEEDED, CiBuildStatus.FAILED}


class CiSyncState(str, enum.Enum):
    NO_TOKEN = "no_token"
    TOKEN_ACQUIRED = "token_acquired"
    SYNC_TRIGGERED = "sync_triggered"
    SYNCED = "synced"
    REPO_ACTIVATED = "repo_activated"


def require_github(user: User) -> tuple[str, str]:
    """Return the user's GitHub id and token or raise ConfigurationError."""
    if not user.github_token:
        raise ConfigurationError(f"User {user.nickname} doesn't have a GitHub token")
    if not user.github_id:
        raise ConfigurationError(f"User {user.nickname} doesn't have a GitHub id")
    return user.github_id, user.github_token


def latest_finished_build(builds: list[CiBuild], commit_sha: str | None) -> CiBuild | None:
    """Pick the most recently finished SUCCEEDED/FAILED build of ``commit_sha``."""
    if not commit_sha:
        return None
    candidates = [
        b for b in builds
        if b.commit_sha == commit_sha
        and b.status in TERMINAL_STATUSES
        and b.finished_at is not None
    ]
    return max(candidates, key=lambda b: b.finished_at, default=None)


def find_pull_request(pull_requests: list[PullRequest], solution: Solution) -> PullRequest | None:
    return next(
        (
            pr for pr in pull_requests
            if pr.author_id == solution.student and pr.base_branch == solution.task
        ),
        None,
    )


class CiSyncEngine:
    """Travis integration for courses."""

    tag = ServiceTag.CI

    def __init__(
        self,
        repository: Repository,
        travis: TravisClient,
        git_factory: Callable[[str], GitHubClient],
        *,
        poll_attempts: int = 60,
        poll_interval: float = 5.0,
        token_settle_delay: float = 10.0,
        sync_delay: float = 60.0,
        locks: KeyedLock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._repository = repository
        self._travis = travis
        self._git_factory = git_factory
        self._poll_attempts = poll_attempts
        self._poll_interval = poll_interval
        self._token_settle_delay = token_settle_delay
        self._sync_delay = sync_delay
        self._locks = locks or KeyedLock()
        self._user_locks = KeyedLock()
        self._sleep = sleep
        self._states: dict[str, CiSyncState] = {}
        self._states_guard = threading.Lock()

    def state(self, nickname: str) -> CiSyncState:
        with self._states_guard:
            return self._states.get(nickname, CiSyncState.NO_TOKEN)

    def _advance(self, user: User, state: CiSyncState) -> None:
        with self._states_guard:
            self._states[user.nickname] = state
        logger.debug(f"Travis state of {user.nickname} is {state.value}")

    # -- activation ----------------------------------------------------------

    def activate(self, course: Course) -> None:
        user = course.user
        github_id, github_token = require_github(user)

        with self._user_locks.hold(user.nickname):
            token = self._ensure_token(user, github_token)
            travis = self._travis.with_token(token)

            logger.info(f"Retrieving travis user for {user.nickname} user")
            travis_user = travis.get_user()

            logger.info(f"Triggering {user.nickname} user travis synchronisation")
            perform_after(self._sync_delay, lambda: travis.sync(travis_user.id), self._sleep)
            self._advance(user, CiSyncState.SYNC_TRIGGERED)

            logger.info(f"Ensuring that {user.nickname} user travis synchronisation has finished")
            retry_until(
                "Travis synchronisation finishes",
                travis.get_user,
                lambda u: not u.is_syncing,
                attempts=self._poll_attempts,
                interval=self._poll_interval,
                sleep=self._sleep,
            )
            self._advance(user, CiSyncState.SYNCED)

            logger.info(f"Ensuring that {user.nickname} user has {course.name} travis repository")
            retry_until(
                "Travis repository appears after synchronisation",
                lambda: travis.has_repository(github_id, course.name),
                attempts=self._poll_attempts,
                interval=self._poll_interval,
                sleep=self._sleep,
            )

            logger.info(f"Activating travis repository of the course {course.identity}")
            travis.activate(github_id, course.name)
            self._advance(user, CiSyncState.REPO_ACTIVATED)

    def _ensure_token(self, user: User, github_token: str) -> str:
        """Return the stored Travis token, acquiring and persisting one if absent."""
        stored = self._repository.get_user(user.nickname)
        token = (stored.ci_token if stored else None) or user.ci_token
        if token:
            self._advance(user, CiSyncState.TOKEN_ACQUIRED)
            return token

        logger.info(f"Retrieving travis token for {user.nickname} user")
        token = self._travis.exchange_token(github_token)
        logger.info(f"Adding newly retrieved travis token to {user.nickname} user")
        self._repository.set_credentials(user.nickname, ci_token=token)
        user.ci_token = token
        self._advance(user, CiSyncState.TOKEN_ACQUIRED)

        # Travis schedules its own synchronisation right after issuing a token
        self._sleep(self._token_settle_delay)
        return token

    def deactivate(self, course: Course) -> None:
        user = course.user
        github_id, _ = require_github(user)

        if not user.ci_token:
            logger.info(
                f"Travis token wasn't found for {user.nickname} "
                f"so no travis repository is deactivated"
            )
            return

        logger.info(f"Deactivating travis for {course.identity} course")
        self._travis.with_token(user.ci_token).deactivate(github_id, course.name)
        logger.info(f"Travis deactivation for {course.identity} course has finished successfully")

    # -- reconciliation ------------------------------------------------------

    def refresh(self, course: Course) -> int:
        """Append build reports for every solution with commits.

        Returns the number of appended reports. Raises DataConsistencyError
        if a solution with commits has no open pull request.
        """
        user = course.user
        github_id, github_token = require_github(user)
        if not user.ci_token:
            raise ConfigurationError(f"Travis token is not specified for {user.nickname}")

        with self._locks.hold(course.id):
            logger.info(f"Travis build results refreshing is started for {course.identity} course")
            travis = self._travis.with_token(user.ci_token)

            logger.info(f"Retrieving open pull requests for {course.identity} course")
            pull_requests = self._git_factory(github_token).open_pull_requests(github_id, course.name)

            logger.info(f"Retrieving travis builds for {course.identity} course")
            builds = travis.get_builds(github_id, course.name, CiEventType.PULL_REQUEST)

            appended = 0
            for solution in course.solutions():
                if not solution.commits:
                    continue

                pull_request = find_pull_request(pull_requests, solution)
                if pull_request is None:
                    raise DataConsistencyError(
                        f"Pull request solution of {solution.student}/{solution.task} student "
                        f"for {course.identity} course was not found"
                    )

                build = latest_finished_build(builds, pull_request.merge_commit_sha)
                if build is not None and self._append(course, solution, build):
                    appended += 1

            logger.info(
                f"Travis build results were refreshed for {course.identity} course, "
                f"{appended} new build report(s)"
            )
            return appended

    def reconcile_build(self, course: Course, build: CiBuild) -> bool:
        """Feed a single build notification into the course's build reports."""
        if (
            build.event_type != CiEventType.PULL_REQUEST
            or build.status not in TERMINAL_STATUSES
            or build.finished_at is None
        ):
            logger.debug(f"Build {build.commit_sha} isn't a finished pull request build, skipping")
            return False

        github_id, github_token = require_github(course.user)

        with self._locks.hold(course.id):
            pull_requests = self._git_factory(github_token).open_pull_requests(github_id, course.name)
            pull_request = next(
                (pr for pr in pull_requests if pr.merge_commit_sha == build.commit_sha), None
            )
            if pull_request is None:
                logger.warning(
                    f"No open pull request of {course.identity} has merge commit {build.commit_sha}"
                )
                return False

            solution = next(
                (
                    s for s in course.solutions()
                    if s.student == pull_request.author_id and s.task == pull_request.base_branch
                ),
                None,
            )
            if solution is None:
                logger.warning(
                    f"Solution of {pull_request.author_id}/{pull_request.base_branch} "
                    f"isn't registered in {course.identity} course"
                )
                return False

            return self._append(course, solution, build)

    def _append(self, course: Course, solution: Solution, build: CiBuild) -> bool:
        appended = self._repository.add_build_report_if_newer(
            solution.id,
            date=build.finished_at,
            succeed=build.status == CiBuildStatus.SUCCEEDED,
        )
        if appended:
            logger.info(
                f"Updating {solution.student} student build report "
                f"for {solution.task} branch of {course.identity} course"
            )
        return appended
