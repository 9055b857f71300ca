"""Plagiarism analysis of course solutions.

For each task branch, the course owner's files form the base (reference
code, not scored) and every student with a built and succeeded solution
contributes their files. One MossTask per branch is run on a shared,
bounded worker pool; each task's report is appended independently.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from concurrent.futures import Executor, Future, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from courseflow.ci.service import require_github
from courseflow.errors import DataConsistencyError
from courseflow.github.client import GitHubClient
from courseflow.language import Language, language_of
from courseflow.model import Course, EnvironmentFile, MossTask, PlagiarismReport
from courseflow.plagiarism.moss import MossClient, MossResult
from courseflow.storage.repository import Repository

logger = logging.getLogger(__name__)

BASE_FOLDER = "base"

MossFactory = Callable[[str, str], MossClient]  # (moss language, comment) -> client


@dataclass
class PlagiarismRun:
    """Outcome of one course analysis."""

    scheduled: list[str] = field(default_factory=list)  # task branches
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # branch -> reason


@dataclass
class _RunGuard:
    """Lets a timed out analysis stop its unfinished jobs from persisting."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    abandoned: bool = False
    persisted: set[str] = field(default_factory=set)  # task branches


class PlagiarismOrchestrator:
    def __init__(
        self,
        repository: Repository,
        git_factory: Callable[[str], GitHubClient],
        moss_factory: MossFactory,
        executor: Executor,
    ) -> None:
        self._repository = repository
        self._git_factory = git_factory
        self._moss_factory = moss_factory
        self._executor = executor

    def extract_tasks(self, course: Course) -> list[MossTask]:
        user = course.user
        github_id, github_token = require_github(user)
        language = language_of(course)
        git = self._git_factory(github_token)

        solutions_by_branch: dict[str, list[EnvironmentFile]] = defaultdict(list)
        for student in course.students:
            solved = {s.task for s in student.solutions if s.built and s.succeed}
            if not solved:
                continue
            for branch in git.branches(student.nickname, course.name):
                if branch.name not in solved:
                    continue
                solutions_by_branch[branch.name].extend(
                    f.moved_to(student.nickname) for f in language.filter(branch.files())
                )

        bases_by_branch: dict[str, list[EnvironmentFile]] = {}
        for branch in git.branches(github_id, course.name):
            if branch.name not in solutions_by_branch:
                continue
            files = [f.moved_to(BASE_FOLDER) for f in language.filter(branch.files())]
            if files:
                bases_by_branch[branch.name] = files

        return [
            MossTask(
                task_name=f"{user.nickname}/{course.name}/{branch}",
                base=base,
                solutions=solutions_by_branch[branch],
            )
            for branch, base in bases_by_branch.items()
            if solutions_by_branch[branch]
        ]

    def analyse(self, course: Course, timeout: float | None = None) -> PlagiarismRun:
        """Run every extracted task and wait for all of them.

        A failing task is logged and reported in the result; it never
        cancels the others. Tasks still running when ``timeout`` expires are
        reported as timed out and never append a report.
        """
        logger.info(f"Extracting moss tasks for {course.identity}")
        moss_tasks = self.extract_tasks(course)
        language = language_of(course)
        logger.info(f"{len(moss_tasks)} moss tasks were extracted for {course.identity}")

        guard = _RunGuard()
        futures: dict[Future, MossTask] = {
            self._executor.submit(self._analyse_task, course, task, language, guard): task
            for task in moss_tasks
        }
        _, not_done = wait(futures, timeout=timeout)
        with guard.lock:
            guard.abandoned = True
            persisted = set(guard.persisted)

        run = PlagiarismRun(scheduled=[t.branch for t in moss_tasks])
        for future, task in futures.items():
            if task.branch in persisted:
                run.succeeded.append(task.branch)
                continue
            if future in not_done:
                future.cancel()
                run.failed[task.branch] = "timed out"
                logger.error(f"Moss task {task.task_name} didn't finish in {timeout}s")
                continue
            error = future.exception()
            run.failed[task.branch] = str(error)
            logger.error(f"Moss task {task.task_name} went bad: {error!r}")

        logger.info(
            f"Plagiarism analysis has finished for {course.identity}: "
            f"{len(run.succeeded)} succeeded, {len(run.failed)} failed"
        )
        return run

    def _analyse_task(
        self,
        course: Course,
        moss_task: MossTask,
        language: Language,
        guard: _RunGuard | None = None,
    ) -> PlagiarismReport | None:
        task = course.task(moss_task.branch)
        if task is None:
            raise DataConsistencyError(
                f"Moss task {moss_task.task_name} aim course task {moss_task.branch} "
                f"wasn't found for course {course.name}"
            )

        logger.info(
            f"Analysing {moss_task.task_name} moss task for {len(moss_task.base)} base files "
            f"and {len(moss_task.solutions)} solutions files"
        )
        client = self._moss_factory(language.moss_language, moss_task.task_name)
        for file in moss_task.base:
            client.upload_file(file, is_base=True)
        for file in moss_task.solutions:
            client.upload_file(file, is_base=False)
        result = client.analyse()

        logger.info(
            f"Moss task analysis {moss_task.task_name} has finished successfully and "
            f"is available by {result.url}"
        )
        if guard is None:
            return self._persist(task.id, result)
        with guard.lock:
            if guard.abandoned:
                logger.warning(
                    f"Moss task {moss_task.task_name} finished after its run timed out, "
                    f"dropping {result.url}"
                )
                return None
            report = self._persist(task.id, result)
            guard.persisted.add(moss_task.branch)
        return report

    def _persist(self, task_id: int, result: MossResult) -> PlagiarismReport:
        return self._repository.add_plagiarism_report(
            task_id, url=result.url, matches=result.matches, date=datetime.now()
        )
