"""Codacy integration for courses."""

from __future__ import annotations

import logging
from typing import Callable

from courseflow.ci.service import find_pull_request, require_github
from courseflow.errors import ConfigurationError
from courseflow.github.client import GitHubClient
from courseflow.locking import KeyedLock
from courseflow.model import Course, ServiceTag, User
from courseflow.quality.client import CodacyClient
from courseflow.storage.repository import Repository

logger = logging.getLogger(__name__)

CodacyFactory = Callable[[str, str], CodacyClient]  # (username, token) -> client


class QualityService:
    tag = ServiceTag.QUALITY

    def __init__(
        self,
        repository: Repository,
        codacy_factory: CodacyFactory,
        git_factory: Callable[[str], GitHubClient],
        default_token: str = "",
        locks: KeyedLock | None = None,
    ) -> None:
        self._repository = repository
        self._codacy_factory = codacy_factory
        self._git_factory = git_factory
        self._default_token = default_token
        self._locks = locks or KeyedLock()

    def _codacy(self, user: User) -> CodacyClient:
        github_id, _ = require_github(user)
        token = user.quality_token or self._default_token
        if not token:
            raise ConfigurationError(f"User {user.nickname} doesn't have a codacy token")
        return self._codacy_factory(github_id, token)

    def activate(self, course: Course) -> None:
        codacy = self._codacy(course.user)
        repository_url = f"https://github.com/{course.user.github_id}/{course.name}"
        logger.info(f"Creating codacy project for {course.identity} course")
        codacy.create_project(course.name, repository_url)

    def deactivate(self, course: Course) -> None:
        codacy = self._codacy(course.user)
        logger.info(f"Deleting codacy project of {course.identity} course")
        codacy.delete_project(course.name)

    def refresh(self, course: Course) -> int:
        """Append a code style report for every solution whose pull request head was graded."""
        github_id, github_token = require_github(course.user)
        codacy = self._codacy(course.user)

        with self._locks.hold(course.id):
            logger.info(f"Codacy results refreshing is started for {course.identity} course")
            pull_requests = self._git_factory(github_token).open_pull_requests(github_id, course.name)

            appended = 0
            for solution in course.solutions():
                pull_request = find_pull_request(pull_requests, solution)
                if pull_request is None or not pull_request.last_commit_sha:
                    continue

                details = codacy.commit_details(course.name, pull_request.last_commit_sha)
                if details.grade is None or details.analysed_at is None:
                    logger.debug(f"Commit {details.sha} isn't analysed by codacy yet")
                    continue

                if self._repository.add_code_style_report_if_newer(
                    solution.id, details.analysed_at, details.grade
                ):
                    appended += 1
                    logger.info(
                        f"Updating {solution.student} student code style report "
                        f"for {solution.task} branch of {course.identity} course"
                    )

            logger.info(f"Codacy results were refreshed for {course.identity} course")
            return appended
