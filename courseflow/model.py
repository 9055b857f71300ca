"""Core data models for courseflow."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

# Floor used when a solution has no reports yet
EPOCH = datetime.min


class ServiceTag(str, enum.Enum):
    """Integrations that can be activated for a course."""

    CI = "ci"
    QUALITY = "quality"


class Lifecycle(str, enum.Enum):
    DRAFT = "draft"
    RUNNING = "running"


class CiBuildStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    OTHER = "other"


class CiEventType(str, enum.Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


@dataclass
class User:
    id: int
    nickname: str
    github_id: str | None = None  # GitHub login owning the course repositories
    github_token: str | None = None
    ci_token: str | None = None
    quality_token: str | None = None


@dataclass
class CourseState:
    lifecycle: Lifecycle = Lifecycle.DRAFT
    activated_services: frozenset[ServiceTag] = frozenset()


@dataclass
class BuildReport:
    date: datetime
    succeed: bool


@dataclass
class CodeStyleReport:
    date: datetime
    grade: str  # "A" .. "F"


@dataclass
class Solution:
    id: int
    student: str  # student nickname (GitHub login)
    task: str  # task branch
    built: bool = False
    succeed: bool = False
    build_reports: list[BuildReport] = field(default_factory=list)  # ascending by date
    code_style_reports: list[CodeStyleReport] = field(default_factory=list)
    commits: list[str] = field(default_factory=list)  # commit shas

    @property
    def last_build_date(self) -> datetime:
        return self.build_reports[-1].date if self.build_reports else EPOCH

    @property
    def last_code_style_date(self) -> datetime:
        return self.code_style_reports[-1].date if self.code_style_reports else EPOCH


@dataclass
class PlagiarismMatch:
    student_a: str
    student_b: str
    shared_lines: int
    url: str
    percentage: int


@dataclass
class PlagiarismReport:
    id: int
    date: datetime
    url: str
    matches: list[PlagiarismMatch] = field(default_factory=list)


@dataclass
class Task:
    id: int
    branch: str  # e.g. "task-1"
    solutions: list[Solution] = field(default_factory=list)
    plagiarism_reports: list[PlagiarismReport] = field(default_factory=list)  # by date


@dataclass
class Student:
    nickname: str
    solutions: list[Solution] = field(default_factory=list)


@dataclass
class Course:
    id: int
    name: str  # also the name of the GitHub repository
    language: str  # e.g. "java"
    testing_language: str
    testing_framework: str  # e.g. "junit"
    user: User  # owner
    description: str = ""
    state: CourseState = field(default_factory=CourseState)
    students: list[Student] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)

    @property
    def identity(self) -> str:
        return f"{self.user.nickname}/{self.name}"

    def task(self, branch: str) -> Task | None:
        return next((t for t in self.tasks if t.branch == branch), None)

    def solutions(self) -> list[Solution]:
        return [s for t in self.tasks for s in t.solutions]


@dataclass(frozen=True)
class EnvironmentFile:
    """A file read from (or destined for) a git branch."""

    path: str
    content: bytes

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def moved_to(self, folder: str) -> EnvironmentFile:
        """Return a copy relocated to ``folder/<file name>``."""
        return EnvironmentFile(path=f"{folder}/{self.name}", content=self.content)


@dataclass
class MossTask:
    """Per-branch bundle of files handed to the plagiarism client (not persisted)."""

    task_name: str  # "{owner}/{course}/{branch}"
    base: list[EnvironmentFile]
    solutions: list[EnvironmentFile]

    @property
    def branch(self) -> str:
        return self.task_name.rsplit("/", 1)[-1]


@dataclass
class PullRequest:
    author_id: str
    receiver_owner: str
    receiver_repo: str
    base_branch: str
    last_commit_sha: str | None
    is_open: bool
    number: int | None = None
    merge_commit_sha: str | None = None


@dataclass
class CiBuild:
    commit_sha: str
    status: CiBuildStatus
    finished_at: datetime | None  # None while the build is running
    event_type: CiEventType
    repository_owner: str | None = None
    repository_name: str | None = None
