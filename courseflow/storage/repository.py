"""CRUD operations for users, courses and their reports."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime

from courseflow.errors import EntityNotFoundError
from courseflow.model import (
    EPOCH,
    BuildReport,
    CodeStyleReport,
    Course,
    CourseState,
    Lifecycle,
    PlagiarismMatch,
    PlagiarismReport,
    ServiceTag,
    Solution,
    Student,
    Task,
    User,
)

_UNSET = object()


class Repository:
    """Data access layer for the courseflow SQLite database.

    Every method runs under a single re-entrant lock so the connection can
    be shared with plagiarism worker threads.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    # -- users ---------------------------------------------------------------

    def create_user(
        self,
        nickname: str,
        github_id: str | None = None,
        github_token: str | None = None,
    ) -> User:
        with self._lock, self._conn:
            cur = self._conn.execute(
                "INSERT INTO users (nickname, github_id, github_token) VALUES (?, ?, ?)",
                (nickname, github_id, github_token),
            )
        return User(
            id=cur.lastrowid,
            nickname=nickname,
            github_id=github_id,
            github_token=github_token,
        )

    def get_user(self, nickname: str) -> User | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM users WHERE nickname = ?", (nickname,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def set_credentials(
        self,
        nickname: str,
        github_id=_UNSET,
        github_token=_UNSET,
        ci_token=_UNSET,
        quality_token=_UNSET,
    ) -> User:
        """Update only the credentials that were passed."""
        updates = {
            "github_id": github_id,
            "github_token": github_token,
            "ci_token": ci_token,
            "quality_token": quality_token,
        }
        updates = {k: v for k, v in updates.items() if v is not _UNSET}
        with self._lock:
            if updates:
                assignments = ", ".join(f"{column} = ?" for column in updates)
                with self._conn:
                    self._conn.execute(
                        f"UPDATE users SET {assignments} WHERE nickname = ?",
                        (*updates.values(), nickname),
                    )
            user = self.get_user(nickname)
        if user is None:
            raise EntityNotFoundError(f"User {nickname} was not found")
        return user

    # -- courses -------------------------------------------------------------

    def create_course(
        self,
        owner: User,
        name: str,
        language: str,
        testing_language: str,
        testing_framework: str,
        task_branches: list[str],
        description: str = "",
    ) -> Course:
        with self._lock:
            with self._conn:
                cur = self._conn.execute(
                    """INSERT INTO courses
                    (user_id, name, description, language, testing_language, testing_framework, lifecycle)
                    VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        owner.id,
                        name,
                        description,
                        language,
                        testing_language,
                        testing_framework,
                        Lifecycle.DRAFT.value,
                    ),
                )
                course_id = cur.lastrowid
                for branch in task_branches:
                    self._conn.execute(
                        "INSERT INTO tasks (course_id, branch) VALUES (?, ?)",
                        (course_id, branch),
                    )
            return self.get_course_by_id(course_id)

    def get_course(self, name: str, owner_nickname: str) -> Course | None:
        with self._lock:
            row = self._conn.execute(
                """SELECT c.id FROM courses c JOIN users u ON c.user_id = u.id
                WHERE c.name = ? AND u.nickname = ?""",
                (name, owner_nickname),
            ).fetchone()
            return self.get_course_by_id(row["id"]) if row else None

    def get_courses(self, owner_nickname: str) -> list[Course]:
        with self._lock:
            rows = self._conn.execute(
                """SELECT c.id FROM courses c JOIN users u ON c.user_id = u.id
                WHERE u.nickname = ? ORDER BY c.name""",
                (owner_nickname,),
            ).fetchall()
            return [self.get_course_by_id(row["id"]) for row in rows]

    def find_course_by_repository(self, owner_github_id: str, repo_name: str) -> Course | None:
        """Locate the course whose GitHub repository is ``owner_github_id/repo_name``."""
        with self._lock:
            row = self._conn.execute(
                """SELECT c.id FROM courses c JOIN users u ON c.user_id = u.id
                WHERE c.name = ? AND u.github_id = ?""",
                (repo_name, owner_github_id),
            ).fetchone()
            return self.get_course_by_id(row["id"]) if row else None

    def get_course_by_id(self, course_id: int) -> Course:
        """Load a course with its owner, tasks, students, solutions and reports."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM courses WHERE id = ?", (course_id,)
            ).fetchone()
            if row is None:
                raise EntityNotFoundError(f"Course {course_id} was not found")

            user_row = self._conn.execute(
                "SELECT * FROM users WHERE id = ?", (row["user_id"],)
            ).fetchone()
            services = frozenset(
                ServiceTag(r["service"])
                for r in self._conn.execute(
                    "SELECT service FROM course_services WHERE course_id = ?",
                    (course_id,),
                ).fetchall()
            )

            tasks = [
                Task(id=r["id"], branch=r["branch"])
                for r in self._conn.execute(
                    "SELECT * FROM tasks WHERE course_id = ? ORDER BY id", (course_id,)
                ).fetchall()
            ]
            tasks_by_id = {t.id: t for t in tasks}

            students: dict[int, Student] = {}
            for r in self._conn.execute(
                "SELECT * FROM students WHERE course_id = ? ORDER BY id", (course_id,)
            ).fetchall():
                students[r["id"]] = Student(nickname=r["nickname"])

            for r in self._conn.execute(
                """SELECT s.* FROM solutions s JOIN tasks t ON s.task_id = t.id
                WHERE t.course_id = ? ORDER BY s.id""",
                (course_id,),
            ).fetchall():
                task = tasks_by_id[r["task_id"]]
                student = students[r["student_id"]]
                solution = self._load_solution(r, student.nickname, task.branch)
                task.solutions.append(solution)
                student.solutions.append(solution)

            for task in tasks:
                task.plagiarism_reports = self._load_plagiarism_reports(task.id)

        return Course(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            language=row["language"],
            testing_language=row["testing_language"],
            testing_framework=row["testing_framework"],
            user=self._row_to_user(user_row),
            state=CourseState(
                lifecycle=Lifecycle(row["lifecycle"]),
                activated_services=services,
            ),
            students=list(students.values()),
            tasks=tasks,
        )

    def update_course_state(
        self,
        course_id: int,
        lifecycle: Lifecycle | None = None,
        activated_services: set[ServiceTag] | frozenset[ServiceTag] | None = None,
    ) -> Course:
        """Replace the lifecycle and/or the activated-service set in one transaction."""
        with self._lock:
            with self._conn:
                if lifecycle is not None:
                    self._conn.execute(
                        "UPDATE courses SET lifecycle = ? WHERE id = ?",
                        (lifecycle.value, course_id),
                    )
                if activated_services is not None:
                    self._conn.execute(
                        "DELETE FROM course_services WHERE course_id = ?", (course_id,)
                    )
                    for service in sorted(activated_services, key=lambda s: s.value):
                        self._conn.execute(
                            "INSERT INTO course_services (course_id, service) VALUES (?, ?)",
                            (course_id, service.value),
                        )
            return self.get_course_by_id(course_id)

    def delete_course(self, course_id: int) -> None:
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM courses WHERE id = ?", (course_id,))

    # -- students and solutions ----------------------------------------------

    def get_or_create_student(self, course_id: int, nickname: str) -> Student:
        """Return the student, registering them with one solution per task if new."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id FROM students WHERE course_id = ? AND nickname = ?",
                (course_id, nickname),
            ).fetchone()
            if row is None:
                with self._conn:
                    cur = self._conn.execute(
                        "INSERT INTO students (course_id, nickname) VALUES (?, ?)",
                        (course_id, nickname),
                    )
                    student_id = cur.lastrowid
                    for task_row in self._conn.execute(
                        "SELECT id FROM tasks WHERE course_id = ?", (course_id,)
                    ).fetchall():
                        self._conn.execute(
                            "INSERT INTO solutions (student_id, task_id) VALUES (?, ?)",
                            (student_id, task_row["id"]),
                        )

            course = self.get_course_by_id(course_id)
        return next(s for s in course.students if s.nickname == nickname)

    def add_commit(self, solution_id: int, sha: str) -> bool:
        """Record a commit on a solution. Returns False if it was already known."""
        with self._lock, self._conn:
            cur = self._conn.execute(
                "INSERT OR IGNORE INTO commits (solution_id, sha) VALUES (?, ?)",
                (solution_id, sha),
            )
        return cur.rowcount > 0

    def add_build_report_if_newer(
        self, solution_id: int, date: datetime, succeed: bool
    ) -> bool:
        """Append a build report only if ``date`` is after the latest one.

        The check and the append happen atomically. Returns whether a report
        was appended.
        """
        with self._lock:
            latest = self._latest_date("build_reports", solution_id)
            if date <= latest:
                return False
            with self._conn:
                self._conn.execute(
                    "INSERT INTO build_reports (solution_id, date, succeed) VALUES (?, ?, ?)",
                    (solution_id, date.isoformat(), int(succeed)),
                )
                self._conn.execute(
                    "UPDATE solutions SET built = 1, succeed = ? WHERE id = ?",
                    (int(succeed), solution_id),
                )
        return True

    def add_code_style_report_if_newer(
        self, solution_id: int, date: datetime, grade: str
    ) -> bool:
        with self._lock:
            latest = self._latest_date("code_style_reports", solution_id)
            if date <= latest:
                return False
            with self._conn:
                self._conn.execute(
                    "INSERT INTO code_style_reports (solution_id, date, grade) VALUES (?, ?, ?)",
                    (solution_id, date.isoformat(), grade),
                )
        return True

    def set_solution_status(self, solution_id: int, built: bool, succeed: bool) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE solutions SET built = ?, succeed = ? WHERE id = ?",
                (int(built), int(succeed), solution_id),
            )

    # -- plagiarism ----------------------------------------------------------

    def add_plagiarism_report(
        self,
        task_id: int,
        url: str,
        matches: list[PlagiarismMatch],
        date: datetime | None = None,
    ) -> PlagiarismReport:
        """Append a plagiarism report to a task. Existing reports are never touched."""
        date = date or datetime.now()
        with self._lock, self._conn:
            cur = self._conn.execute(
                "INSERT INTO plagiarism_reports (task_id, date, url) VALUES (?, ?, ?)",
                (task_id, date.isoformat(), url),
            )
            report_id = cur.lastrowid
            for match in matches:
                self._conn.execute(
                    """INSERT INTO plagiarism_matches
                    (report_id, student_a, student_b, shared_lines, url, percentage)
                    VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        report_id,
                        match.student_a,
                        match.student_b,
                        match.shared_lines,
                        match.url,
                        match.percentage,
                    ),
                )
        return PlagiarismReport(id=report_id, date=date, url=url, matches=list(matches))

    # -- stats ---------------------------------------------------------------

    def get_stats(self) -> dict:
        """Get summary statistics about the stored data."""
        tables = [
            "users",
            "courses",
            "tasks",
            "students",
            "solutions",
            "build_reports",
            "code_style_reports",
            "plagiarism_reports",
        ]
        with self._lock:
            return {
                table: self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in tables
            }

    # -- helpers -------------------------------------------------------------

    def _latest_date(self, table: str, solution_id: int) -> datetime:
        row = self._conn.execute(
            f"SELECT date FROM {table} WHERE solution_id = ? ORDER BY date DESC LIMIT 1",
            (solution_id,),
        ).fetchone()
        return datetime.fromisoformat(row["date"]) if row else EPOCH

    def _load_solution(self, row: sqlite3.Row, student: str, branch: str) -> Solution:
        solution_id = row["id"]
        build_reports = [
            BuildReport(date=datetime.fromisoformat(r["date"]), succeed=bool(r["succeed"]))
            for r in self._conn.execute(
                "SELECT date, succeed FROM build_reports WHERE solution_id = ? ORDER BY date",
                (solution_id,),
            ).fetchall()
        ]
        code_style_reports = [
            CodeStyleReport(date=datetime.fromisoformat(r["date"]), grade=r["grade"])
            for r in self._conn.execute(
                "SELECT date, grade FROM code_style_reports WHERE solution_id = ? ORDER BY date",
                (solution_id,),
            ).fetchall()
        ]
        commits = [
            r["sha"]
            for r in self._conn.execute(
                "SELECT sha FROM commits WHERE solution_id = ? ORDER BY id", (solution_id,)
            ).fetchall()
        ]
        return Solution(
            id=solution_id,
            student=student,
            task=branch,
            built=bool(row["built"]),
            succeed=bool(row["succeed"]),
            build_reports=build_reports,
            code_style_reports=code_style_reports,
            commits=commits,
        )

    def _load_plagiarism_reports(self, task_id: int) -> list[PlagiarismReport]:
        reports = []
        for r in self._conn.execute(
            "SELECT * FROM plagiarism_reports WHERE task_id = ? ORDER BY date, id",
            (task_id,),
        ).fetchall():
            matches = [
                PlagiarismMatch(
                    student_a=m["student_a"],
                    student_b=m["student_b"],
                    shared_lines=m["shared_lines"],
                    url=m["url"] or "",
                    percentage=m["percentage"],
                )
                for m in self._conn.execute(
                    "SELECT * FROM plagiarism_matches WHERE report_id = ? ORDER BY id",
                    (r["id"],),
                ).fetchall()
            ]
            reports.append(
                PlagiarismReport(
                    id=r["id"],
                    date=datetime.fromisoformat(r["date"]),
                    url=r["url"],
                    matches=matches,
                )
            )
        return reports

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            nickname=row["nickname"],
            github_id=row["github_id"],
            github_token=row["github_token"],
            ci_token=row["ci_token"],
            quality_token=row["quality_token"],
        )
