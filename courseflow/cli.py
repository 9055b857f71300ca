"""CLI entry point for courseflow."""

from __future__ import annotations

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import typer
from rich import print as rprint
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from courseflow.activation import ActivationCoordinator
from courseflow.ci.client import TravisClient
from courseflow.ci.service import CiSyncEngine
from courseflow.config import Config
from courseflow.courses import CourseManager
from courseflow.errors import CourseflowError
from courseflow.github.client import GitHubClient
from courseflow.locking import KeyedLock
from courseflow.model import ServiceTag
from courseflow.plagiarism.moss import MossClient
from courseflow.plagiarism.service import PlagiarismOrchestrator
from courseflow.quality.client import CodacyClient
from courseflow.quality.service import QualityService
from courseflow.storage.db import get_connection
from courseflow.storage.repository import Repository
from courseflow.webhooks import WebhookHandler

app = typer.Typer(help="Orchestrate GitHub, CI, code quality and plagiarism checks for courses.")


@dataclass
class Services:
    repository: Repository
    manager: CourseManager
    coordinator: ActivationCoordinator
    plagiarism: PlagiarismOrchestrator
    webhooks: WebhookHandler


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False)],
    )


@contextmanager
def _services(config: Config) -> Iterator[Services]:
    """Wire every service from ``config`` and release resources afterwards."""
    conn = get_connection(config.db_path)
    repository = Repository(conn)
    locks = KeyedLock()
    executor = ThreadPoolExecutor(
        max_workers=config.plagiarism_workers, thread_name_prefix="moss"
    )
    travis = TravisClient(config.travis_api_url)

    def git_factory(token: str) -> GitHubClient:
        return GitHubClient(token=token)

    def codacy_factory(username: str, token: str) -> CodacyClient:
        return CodacyClient(config.codacy_api_url, username, token)

    def moss_factory(language: str, comment: str) -> MossClient:
        return MossClient(
            config.moss_user_id,
            language,
            config.moss_host,
            config.moss_port,
            comment=comment,
        )

    ci_engine = CiSyncEngine(
        repository,
        travis,
        git_factory,
        poll_attempts=config.poll_attempts,
        poll_interval=config.poll_interval,
        token_settle_delay=config.token_settle_delay,
        sync_delay=config.sync_delay,
        locks=locks,
    )
    quality = QualityService(
        repository, codacy_factory, git_factory, default_token=config.codacy_token, locks=locks
    )
    coordinator = ActivationCoordinator(
        repository, {ServiceTag.CI: ci_engine, ServiceTag.QUALITY: quality}, locks=locks
    )

    try:
        yield Services(
            repository=repository,
            manager=CourseManager(repository, coordinator, git_factory, config.webhook_url),
            coordinator=coordinator,
            plagiarism=PlagiarismOrchestrator(repository, git_factory, moss_factory, executor),
            webhooks=WebhookHandler(repository, ci_engine, git_factory),
        )
    except CourseflowError as e:
        rprint(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    finally:
        executor.shutdown(wait=True)
        travis.close()
        conn.close()


def _load_config() -> Config:
    config = Config.load()
    for issue in config.validate():
        rprint(f"[yellow]Config warning: {issue}[/yellow]")
    return config


def _parse_service(value: str) -> ServiceTag:
    try:
        return ServiceTag(value.lower())
    except ValueError:
        choices = ", ".join(t.value for t in ServiceTag)
        raise typer.BadParameter(f"Unknown service {value}, expected one of: {choices}")


@app.command("init-user")
def init_user(
    nickname: str = typer.Argument(help="Courseflow user nickname"),
    github_id: str = typer.Option(None, "--github-id", help="GitHub login owning course repositories"),
    github_token: str = typer.Option(
        None, "--github-token", help="GitHub token (defaults to COURSEFLOW_GITHUB_TOKEN)"
    ),
    ci_token: str = typer.Option(None, "--ci-token", help="Travis token, acquired on activation if absent"),
    quality_token: str = typer.Option(None, "--quality-token", help="Codacy API token"),
) -> None:
    """Create a user or update their credentials."""
    config = _load_config()
    with _services(config) as s:
        token = github_token or config.github_token or None
        if s.repository.get_user(nickname) is None:
            s.repository.create_user(nickname, github_id=github_id, github_token=token)
            rprint(f"Created user [bold]{nickname}[/bold]")

        updates = {
            "github_id": github_id,
            "github_token": token,
            "ci_token": ci_token,
            "quality_token": quality_token,
        }
        s.repository.set_credentials(nickname, **{k: v for k, v in updates.items() if v})
        rprint(f"[green]Credentials of {nickname} are up to date[/green]")


@app.command()
def create(
    owner: str = typer.Argument(help="Owner nickname"),
    name: str = typer.Argument(help="Course name, also the repository name"),
    language: str = typer.Option(..., "--language", "-l", help="java, kotlin or cpp"),
    testing_language: str = typer.Option(..., "--testing-language", help="Language of the tests"),
    framework: str = typer.Option(..., "--framework", "-f", help="junit, spek or bash"),
    tasks: int = typer.Option(..., "--tasks", "-t", help="Number of task branches"),
    description: str = typer.Option("", "--description", "-d"),
) -> None:
    """Create a course together with its GitHub repository."""
    with _services(_load_config()) as s:
        course = s.manager.create_course(
            owner, name, language, testing_language, framework, tasks, description
        )
        rprint(
            f"[green]Course {course.identity} was created with "
            f"{len(course.tasks)} task(s)[/green]"
        )


@app.command("import")
def import_course(
    owner: str = typer.Argument(help="Owner nickname"),
    name: str = typer.Argument(help="Existing repository name"),
    language: str = typer.Option(..., "--language", "-l"),
    testing_language: str = typer.Option(..., "--testing-language"),
    framework: str = typer.Option(..., "--framework", "-f"),
    description: str = typer.Option("", "--description", "-d"),
) -> None:
    """Import an existing repository as a course."""
    with _services(_load_config()) as s:
        course = s.manager.import_course(
            owner, name, language, testing_language, framework, description
        )
        branches = ", ".join(t.branch for t in course.tasks)
        rprint(f"[green]Course {course.identity} was imported with tasks: {branches}[/green]")


@app.command()
def activate(
    owner: str = typer.Argument(help="Owner nickname"),
    name: str = typer.Argument(help="Course name"),
) -> None:
    """Start a course and activate every integration."""
    with _services(_load_config()) as s:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
        ) as progress:
            progress.add_task(f"Activating {owner}/{name}...", total=None)
            services = s.manager.activate(owner, name)

        missing = set(ServiceTag) - services
        rprint(
            f"Course {owner}/{name} is running with services: "
            f"[bold]{', '.join(sorted(t.value for t in services)) or 'none'}[/bold]"
        )
        if missing:
            rprint(
                f"[yellow]Not activated: {', '.join(sorted(t.value for t in missing))} "
                f"(see log for details)[/yellow]"
            )


@app.command("activate-service")
def activate_service(
    owner: str = typer.Argument(help="Owner nickname"),
    name: str = typer.Argument(help="Course name"),
    service: str = typer.Argument(help="ci or quality"),
) -> None:
    """Activate one integration on a running course."""
    tag = _parse_service(service)
    with _services(_load_config()) as s:
        if s.coordinator.activate_service(s.manager.course(owner, name), tag):
            rprint(f"[green]{tag.value} was activated for {owner}/{name}[/green]")
        else:
            rprint(f"{tag.value} is already active for {owner}/{name}")


@app.command("deactivate-service")
def deactivate_service(
    owner: str = typer.Argument(help="Owner nickname"),
    name: str = typer.Argument(help="Course name"),
    service: str = typer.Argument(help="ci or quality"),
) -> None:
    """Deactivate one integration of a course."""
    tag = _parse_service(service)
    with _services(_load_config()) as s:
        if s.coordinator.deactivate_service(s.manager.course(owner, name), tag):
            rprint(f"[green]{tag.value} was deactivated for {owner}/{name}[/green]")
        else:
            rprint(f"[yellow]{tag.value} is still active for {owner}/{name}[/yellow]")
            raise typer.Exit(1)


@app.command()
def sync(
    owner: str = typer.Argument(help="Owner nickname"),
    name: str = typer.Argument(help="Course name"),
) -> None:
    """Pull build and code style results into the course."""
    with _services(_load_config()) as s:
        outcome = s.manager.synchronize(owner, name)
        for tag, count in outcome.appended.items():
            rprint(f"  {tag.value}: [green]{count} new report(s)[/green]")
        for tag, reason in outcome.failed.items():
            rprint(f"  {tag.value}: [red]{reason}[/red]")
        if outcome.failed:
            raise typer.Exit(1)


@app.command()
def plagiarism(
    owner: str = typer.Argument(help="Owner nickname"),
    name: str = typer.Argument(help="Course name"),
    timeout: float = typer.Option(None, "--timeout", help="Seconds to wait for all analyses"),
) -> None:
    """Run plagiarism analysis for every task of a course."""
    config = _load_config()
    if not config.moss_user_id:
        rprint("[red]COURSEFLOW_MOSS_USER_ID not set[/red]")
        raise typer.Exit(1)

    with _services(config) as s:
        course = s.manager.course(owner, name)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
        ) as progress:
            progress.add_task(f"Analysing {course.identity}...", total=None)
            run = s.plagiarism.analyse(course, timeout=timeout)

        rprint(f"Scheduled [bold]{len(run.scheduled)}[/bold] analyses")
        for branch in run.succeeded:
            report = s.repository.get_course_by_id(course.id).task(branch).plagiarism_reports[-1]
            rprint(f"  {branch}: [green]{report.url}[/green] ({len(report.matches)} match(es))")
        for branch, reason in run.failed.items():
            rprint(f"  {branch}: [red]{reason}[/red]")


@app.command()
def delete(
    owner: str = typer.Argument(help="Owner nickname"),
    name: str = typer.Argument(help="Course name"),
    keep_repository: bool = typer.Option(False, help="Keep the GitHub repository"),
) -> None:
    """Deactivate and delete a course."""
    with _services(_load_config()) as s:
        s.manager.delete_course(owner, name, delete_repository=not keep_repository)
        rprint(f"[green]Course {owner}/{name} was deleted[/green]")


@app.command()
def status(
    owner: str = typer.Argument(help="Owner nickname"),
    name: str = typer.Argument(None, help="Course name, all courses if omitted"),
) -> None:
    """Show courses and their solutions."""
    with _services(_load_config()) as s:
        courses = [s.manager.course(owner, name)] if name else s.repository.get_courses(owner)
        if not courses:
            rprint(f"[yellow]{owner} has no courses[/yellow]")
            return

        for course in courses:
            services = ", ".join(sorted(t.value for t in course.state.activated_services))
            rprint(
                f"\n[bold]{course.identity}[/bold] ({course.language}, "
                f"{course.state.lifecycle.value}, services: {services or 'none'})"
            )
            table = Table("Student", "Task", "Commits", "Build", "Code style")
            for solution in course.solutions():
                build = "-" if not solution.built else ("passed" if solution.succeed else "failed")
                grade = solution.code_style_reports[-1].grade if solution.code_style_reports else "-"
                table.add_row(
                    solution.student, solution.task, str(len(solution.commits)), build, grade
                )
            rprint(table)

        stats = s.repository.get_stats()
        rprint("\n[bold]Totals:[/bold] " + ", ".join(f"{k}: {v}" for k, v in stats.items()))


@app.command()
def webhook(
    payload: Path = typer.Argument(None, help="Payload file, stdin if omitted"),
    github_event: str = typer.Option(
        None, "--github-event", help="X-GitHub-Event header value of a GitHub delivery"
    ),
    ci: bool = typer.Option(False, "--ci", help="Payload is a CI build notification"),
) -> None:
    """Apply a webhook delivery."""
    if bool(github_event) == ci:
        rprint("[red]Pass exactly one of --github-event or --ci[/red]")
        raise typer.Exit(1)

    body = payload.read_bytes() if payload else sys.stdin.buffer.read()
    with _services(_load_config()) as s:
        if ci:
            applied = s.webhooks.handle_ci(body)
        else:
            applied = s.webhooks.handle_github(body, github_event)
        rprint("[green]Delivery applied[/green]" if applied else "Delivery had no effect")


if __name__ == "__main__":
    app()
