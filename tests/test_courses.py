"""Tests for courseflow.courses."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from courseflow.activation import ActivationCoordinator
from courseflow.courses import CourseManager
from courseflow.errors import ConfigurationError, EntityNotFoundError, IntegrationError
from courseflow.model import Course, Lifecycle, ServiceTag, User
from courseflow.storage.repository import Repository

WEBHOOK_URL = "https://hooks.example.org/github"


@pytest.fixture
def ci() -> MagicMock:
    integration = MagicMock()
    integration.refresh.return_value = 2
    return integration


@pytest.fixture
def manager(repo: Repository, ci: MagicMock, git_factory: MagicMock) -> CourseManager:
    coordinator = ActivationCoordinator(repo, {ServiceTag.CI: ci})
    return CourseManager(repo, coordinator, git_factory, WEBHOOK_URL)


class TestCreateCourse:
    def test_creates_repository_branches_and_course(
        self, manager: CourseManager, owner: User, git: MagicMock
    ):
        git.create_sub_branches.return_value = ["task-1", "task-2", "task-3"]

        course = manager.create_course("teacher", "graphs", "kotlin", "kotlin", "spek", 3, "Graph theory")

        repository = git.create_repository.return_value
        git.create_repository.assert_called_once_with("graphs", "Graph theory")
        git.create_branch.assert_called_once_with(repository, "prerequisites")
        git.create_sub_branches.assert_called_once_with(repository, "prerequisites", 3, "task-")
        git.add_web_hook.assert_called_once_with(repository, WEBHOOK_URL)
        assert [t.branch for t in course.tasks] == ["task-1", "task-2", "task-3"]
        assert course.state.lifecycle == Lifecycle.DRAFT
        assert course.description == "Graph theory"

    def test_invalid_environment_makes_no_external_calls(
        self, manager: CourseManager, owner: User, git_factory: MagicMock
    ):
        with pytest.raises(ConfigurationError):
            manager.create_course("teacher", "graphs", "cpp", "java", "junit", 3)
        git_factory.assert_not_called()

    def test_duplicate_course(self, manager: CourseManager, course: Course, git_factory: MagicMock):
        with pytest.raises(ConfigurationError, match="already exists"):
            manager.create_course("teacher", "algorithms", "java", "java", "junit", 2)
        git_factory.assert_not_called()

    def test_unknown_owner(self, manager: CourseManager):
        with pytest.raises(EntityNotFoundError):
            manager.create_course("ghost", "graphs", "java", "java", "junit", 2)

    def test_without_webhook_url(self, repo: Repository, owner: User, git: MagicMock, git_factory: MagicMock):
        manager = CourseManager(repo, ActivationCoordinator(repo, {}), git_factory)
        git.create_sub_branches.return_value = ["task-1"]

        manager.create_course("teacher", "graphs", "java", "java", "junit", 1)

        git.add_web_hook.assert_not_called()


class TestImportCourse:
    def test_task_branches_become_tasks(self, manager: CourseManager, owner: User, git: MagicMock):
        git.branch_names.return_value = ["main", "task-2", "prerequisites", "task-1"]

        course = manager.import_course("teacher", "legacy", "java", "java", "junit")

        git.branch_names.assert_called_once_with("teacher-gh", "legacy")
        assert [t.branch for t in course.tasks] == ["task-1", "task-2"]
        git.add_web_hook.assert_called_once_with(git.repository.return_value, WEBHOOK_URL)

    def test_repository_without_tasks(self, manager: CourseManager, owner: User, git: MagicMock):
        git.branch_names.return_value = ["main"]
        with pytest.raises(ConfigurationError):
            manager.import_course("teacher", "legacy", "java", "java", "junit")


class TestDeleteCourse:
    def test_deactivates_and_deletes(
        self, manager: CourseManager, repo: Repository, course: Course, ci: MagicMock, git: MagicMock
    ):
        manager.activate("teacher", "algorithms")

        manager.delete_course("teacher", "algorithms")

        ci.deactivate.assert_called_once()
        assert repo.get_course("algorithms", "teacher") is None
        git.delete_repository.assert_called_once_with("teacher-gh", "algorithms")

    def test_deactivation_failure_does_not_block_deletion(
        self, manager: CourseManager, repo: Repository, course: Course, ci: MagicMock
    ):
        manager.activate("teacher", "algorithms")
        ci.deactivate.side_effect = IntegrationError("travis", "Travis deactivation went bad")

        manager.delete_course("teacher", "algorithms", delete_repository=False)

        assert repo.get_course("algorithms", "teacher") is None

    def test_missing_course(self, manager: CourseManager, owner: User):
        with pytest.raises(EntityNotFoundError):
            manager.delete_course("teacher", "nothing")


class TestSynchronize:
    def test_requires_running_course(self, manager: CourseManager, course: Course):
        with pytest.raises(ConfigurationError):
            manager.synchronize("teacher", "algorithms")

    def test_refreshes_activated_services(self, manager: CourseManager, course: Course, ci: MagicMock):
        manager.activate("teacher", "algorithms")

        outcome = manager.synchronize("teacher", "algorithms")

        assert outcome.appended == {ServiceTag.CI: 2}
        ci.refresh.assert_called_once()
