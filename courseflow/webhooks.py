"""Routing of inbound GitHub and CI webhook deliveries to courses."""

from __future__ import annotations

import logging
from typing import Callable

from courseflow.ci.builds import parse_ci_webhook
from courseflow.ci.service import CiSyncEngine
from courseflow.errors import ConfigurationError
from courseflow.github.client import GitHubClient
from courseflow.github.webhook import parse_github_event
from courseflow.model import Course, PullRequest
from courseflow.storage.repository import Repository

logger = logging.getLogger(__name__)


class WebhookHandler:
    """Applies webhook deliveries to the stored course data.

    Usage:
        handler = WebhookHandler(repo, ci_engine, lambda token: GitHubClient(token))
        handler.handle_github(body, "pull_request")
        handler.handle_ci(body)
    """

    def __init__(
        self,
        repository: Repository,
        ci_engine: CiSyncEngine,
        git_factory: Callable[[str], GitHubClient],
    ) -> None:
        self._repository = repository
        self._ci_engine = ci_engine
        self._git_factory = git_factory

    def handle_github(self, body: str | bytes, event_type: str) -> bool:
        """Record the pull request's last commit on the student's solution.

        Returns whether a new commit was recorded.
        """
        pull_request = parse_github_event(body, event_type, self._load_commits)
        if pull_request is None:
            return False
        if not pull_request.is_open:
            logger.info(
                f"Pull request of {pull_request.author_id} to "
                f"{pull_request.receiver_owner}/{pull_request.receiver_repo} is closed, skipping"
            )
            return False

        course = self._repository.find_course_by_repository(
            pull_request.receiver_owner, pull_request.receiver_repo
        )
        if course is None:
            logger.warning(
                f"Course for {pull_request.receiver_owner}/{pull_request.receiver_repo} "
                f"repository wasn't found, skipping pull request"
            )
            return False
        return self._record_commit(course, pull_request)

    def handle_ci(self, body: str | bytes) -> bool:
        """Reconcile a CI build notification. Returns whether a report was appended."""
        build = parse_ci_webhook(body)
        if build is None:
            return False
        if not build.repository_owner or not build.repository_name:
            logger.warning(f"CI build {build.commit_sha} doesn't name its repository, skipping")
            return False

        course = self._repository.find_course_by_repository(
            build.repository_owner, build.repository_name
        )
        if course is None:
            logger.warning(
                f"Course for {build.repository_owner}/{build.repository_name} "
                f"repository wasn't found, skipping build {build.commit_sha}"
            )
            return False
        return self._ci_engine.reconcile_build(course, build)

    def _record_commit(self, course: Course, pull_request: PullRequest) -> bool:
        if course.task(pull_request.base_branch) is None:
            logger.warning(
                f"Branch {pull_request.base_branch} isn't a task of {course.identity} course, skipping"
            )
            return False
        if not pull_request.last_commit_sha:
            logger.warning(f"Pull request of {pull_request.author_id} has no commits, skipping")
            return False

        student = self._repository.get_or_create_student(course.id, pull_request.author_id)
        solution = next(s for s in student.solutions if s.task == pull_request.base_branch)
        added = self._repository.add_commit(solution.id, pull_request.last_commit_sha)
        if added:
            logger.info(
                f"Commit {pull_request.last_commit_sha} was added to {student.nickname} "
                f"solution of {pull_request.base_branch} in {course.identity} course"
            )
        return added

    def _load_commits(self, owner: str, repo: str, number: int | None) -> list[str]:
        if number is None:
            return []
        course = self._repository.find_course_by_repository(owner, repo)
        if course is None:
            return []
        if not course.user.github_token:
            raise ConfigurationError(f"User {course.user.nickname} doesn't have a GitHub token")
        return self._git_factory(course.user.github_token).pull_request_commits(owner, repo, number)
