"""Course creation, import, deletion and synchronization."""

from __future__ import annotations

import logging
from typing import Callable

from courseflow.activation import ActivationCoordinator, RefreshOutcome
from courseflow.ci.service import require_github
from courseflow.errors import ConfigurationError, EntityNotFoundError
from courseflow.github.client import PREREQUISITES_BRANCH, GitHubClient
from courseflow.language import validate_environment
from courseflow.model import Course, ServiceTag, User
from courseflow.storage.repository import Repository

logger = logging.getLogger(__name__)

TASK_PREFIX = "task-"


class CourseManager:
    def __init__(
        self,
        repository: Repository,
        coordinator: ActivationCoordinator,
        git_factory: Callable[[str], GitHubClient],
        webhook_url: str = "",
    ) -> None:
        self._repository = repository
        self._coordinator = coordinator
        self._git_factory = git_factory
        self._webhook_url = webhook_url

    def user(self, nickname: str) -> User:
        user = self._repository.get_user(nickname)
        if user is None:
            raise EntityNotFoundError(f"User {nickname} was not found")
        return user

    def course(self, owner: str, name: str) -> Course:
        course = self._repository.get_course(name, owner)
        if course is None:
            raise EntityNotFoundError(f"Course {owner}/{name} was not found")
        return course

    def create_course(
        self,
        owner: str,
        name: str,
        language: str,
        testing_language: str,
        testing_framework: str,
        tasks_count: int,
        description: str = "",
    ) -> Course:
        """Create the course repository with its task branches and register the course."""
        if tasks_count < 1:
            raise ConfigurationError("A course needs at least one task")
        validate_environment(language, testing_language, testing_framework)
        user = self.user(owner)
        _, github_token = require_github(user)
        self._ensure_absent(owner, name)

        git = self._git_factory(github_token)
        logger.info(f"Creating {owner}/{name} course repository")
        repo = git.create_repository(name, description)
        git.create_branch(repo, PREREQUISITES_BRANCH)
        branches = git.create_sub_branches(repo, PREREQUISITES_BRANCH, tasks_count, TASK_PREFIX)
        logger.info(f"Created {len(branches)} task branches for {owner}/{name} course")
        self._add_web_hook(git, repo, f"{owner}/{name}")

        return self._repository.create_course(
            user,
            name,
            language=language,
            testing_language=testing_language,
            testing_framework=testing_framework,
            task_branches=branches,
            description=description,
        )

    def import_course(
        self,
        owner: str,
        name: str,
        language: str,
        testing_language: str,
        testing_framework: str,
        description: str = "",
    ) -> Course:
        """Register an existing repository as a course; its ``task-`` branches become tasks."""
        validate_environment(language, testing_language, testing_framework)
        user = self.user(owner)
        github_id, github_token = require_github(user)
        self._ensure_absent(owner, name)

        git = self._git_factory(github_token)
        branches = sorted(
            b for b in git.branch_names(github_id, name) if b.startswith(TASK_PREFIX)
        )
        if not branches:
            raise ConfigurationError(
                f"Repository {github_id}/{name} has no {TASK_PREFIX} branches to import"
            )
        logger.info(f"Importing {owner}/{name} course with {len(branches)} tasks")
        self._add_web_hook(git, git.repository(github_id, name), f"{owner}/{name}")

        return self._repository.create_course(
            user,
            name,
            language=language,
            testing_language=testing_language,
            testing_framework=testing_framework,
            task_branches=branches,
            description=description,
        )

    def delete_course(self, owner: str, name: str, delete_repository: bool = True) -> None:
        """Deactivate the course's services, then remove it and its repository.

        Deactivation failures are logged by the coordinator and never stop
        the deletion.
        """
        course = self.course(owner, name)
        logger.info(f"Deleting {course.identity} course")
        self._coordinator.deactivate(course)
        self._repository.delete_course(course.id)

        if delete_repository:
            github_id, github_token = require_github(course.user)
            self._git_factory(github_token).delete_repository(github_id, name)
        logger.info(f"Course {course.identity} was deleted")

    def activate(self, owner: str, name: str) -> frozenset[ServiceTag]:
        return self._coordinator.activate(self.course(owner, name))

    def synchronize(self, owner: str, name: str) -> RefreshOutcome:
        course = self.course(owner, name)
        logger.info(f"Synchronizing {course.identity} course")
        return self._coordinator.refresh(course)

    def _ensure_absent(self, owner: str, name: str) -> None:
        if self._repository.get_course(name, owner) is not None:
            raise ConfigurationError(f"Course {owner}/{name} already exists")

    def _add_web_hook(self, git: GitHubClient, repo, identity: str) -> None:
        if not self._webhook_url:
            logger.warning(f"Webhook url isn't configured, {identity} pull requests won't be tracked")
            return
        git.add_web_hook(repo, self._webhook_url)
        logger.info(f"Webhook {self._webhook_url} was added to {identity} repository")
