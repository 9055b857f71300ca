"""SQLite database setup and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    nickname TEXT NOT NULL UNIQUE,
    github_id TEXT,
    github_token TEXT,
    ci_token TEXT,
    quality_token TEXT
);

CREATE TABLE IF NOT EXISTS courses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    description TEXT,
    language TEXT NOT NULL,
    testing_language TEXT NOT NULL,
    testing_framework TEXT NOT NULL,
    lifecycle TEXT NOT NULL DEFAULT 'draft',
    UNIQUE (user_id, name)
);

CREATE TABLE IF NOT EXISTS course_services (
    course_id INTEGER NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
    service TEXT NOT NULL,
    PRIMARY KEY (course_id, service)
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id INTEGER NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
    branch TEXT NOT NULL,
    UNIQUE (course_id, branch)
);

CREATE TABLE IF NOT EXISTS students (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id INTEGER NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
    nickname TEXT NOT NULL,
    UNIQUE (course_id, nickname)
);

CREATE TABLE IF NOT EXISTS solutions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
    task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    built INTEGER NOT NULL DEFAULT 0,
    succeed INTEGER NOT NULL DEFAULT 0,
    UNIQUE (student_id, task_id)
);

CREATE TABLE IF NOT EXISTS commits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    solution_id INTEGER NOT NULL REFERENCES solutions(id) ON DELETE CASCADE,
    sha TEXT NOT NULL,
    UNIQUE (solution_id, sha)
);

CREATE TABLE IF NOT EXISTS build_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    solution_id INTEGER NOT NULL REFERENCES solutions(id) ON DELETE CASCADE,
    date TIMESTAMP NOT NULL,
    succeed INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS code_style_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    solution_id INTEGER NOT NULL REFERENCES solutions(id) ON DELETE CASCADE,
    date TIMESTAMP NOT NULL,
    grade TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS plagiarism_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    date TIMESTAMP NOT NULL,
    url TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS plagiarism_matches (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    report_id INTEGER NOT NULL REFERENCES plagiarism_reports(id) ON DELETE CASCADE,
    student_a TEXT NOT NULL,
    student_b TEXT NOT NULL,
    shared_lines INTEGER NOT NULL,
    url TEXT,
    percentage INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_courses_user ON courses(user_id);
CREATE INDEX IF NOT EXISTS idx_tasks_course ON tasks(course_id);
CREATE INDEX IF NOT EXISTS idx_solutions_task ON solutions(task_id);
CREATE INDEX IF NOT EXISTS idx_build_reports_solution ON build_reports(solution_id);
CREATE INDEX IF NOT EXISTS idx_code_style_reports_solution ON code_style_reports(solution_id);
CREATE INDEX IF NOT EXISTS idx_plagiarism_reports_task ON plagiarism_reports(task_id);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Create or open a SQLite database with the courseflow schema.

    The connection may be used from plagiarism worker threads, so callers
    must serialize access (Repository does).
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
    conn.commit()

    return conn
