"""Thin wrapper around PyGithub for the git operations courses need."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from github import Auth, Github, GithubException, UnknownObjectException
from github.Repository import Repository

from courseflow.errors import IntegrationError
from courseflow.model import EnvironmentFile, PullRequest

logger = logging.getLogger(__name__)

PREREQUISITES_BRANCH = "prerequisites"


@dataclass
class Branch:
    """A branch of a course or student repository.

    Files are read lazily: ``files()`` hits the API on first call only.
    """

    name: str
    owner: str
    repo: str
    _loader: Callable[[], list[EnvironmentFile]] = field(repr=False, compare=False)
    _files: list[EnvironmentFile] | None = field(default=None, repr=False, compare=False)

    def files(self) -> list[EnvironmentFile]:
        if self._files is None:
            self._files = self._loader()
        return self._files


class GitHubClient:
    """Authenticated GitHub client acting on behalf of one user.

    Usage:
        client = GitHubClient(token="ghp_...")
        branches = client.branches("student", "course-name")
    """

    def __init__(self, token: str, github: Github | None = None) -> None:
        self._gh = github or Github(auth=Auth.Token(token))

    def repository(self, owner: str, name: str) -> Repository:
        try:
            return self._gh.get_repo(f"{owner}/{name}")
        except GithubException as e:
            raise IntegrationError("github", f"Repository {owner}/{name} is unavailable", str(e.data)) from e

    def repository_exists(self, owner: str, name: str) -> bool:
        try:
            self._gh.get_repo(f"{owner}/{name}")
        except UnknownObjectException:
            return False
        return True

    def branches(self, owner: str, name: str) -> list[Branch]:
        """List branches of ``owner/name``; an absent repository has none."""
        try:
            repo = self._gh.get_repo(f"{owner}/{name}")
        except UnknownObjectException:
            logger.info(f"Repository {owner}/{name} was not found, no branches to read")
            return []

        return [
            Branch(
                name=b.name,
                owner=owner,
                repo=name,
                _loader=self._files_loader(repo, b.name, b.commit.sha),
            )
            for b in repo.get_branches()
        ]

    def branch_names(self, owner: str, name: str) -> list[str]:
        return [b.name for b in self.repository(owner, name).get_branches()]

    def open_pull_requests(self, owner: str, name: str) -> list[PullRequest]:
        repo = self.repository(owner, name)
        return [
            PullRequest(
                author_id=pr.user.login,
                receiver_owner=owner,
                receiver_repo=name,
                base_branch=pr.base.ref,
                last_commit_sha=pr.head.sha,
                is_open=True,
                number=pr.number,
                merge_commit_sha=pr.merge_commit_sha,
            )
            for pr in repo.get_pulls(state="open")
        ]

    def pull_request_commits(self, owner: str, name: str, number: int) -> list[str]:
        """Return commit shas of a pull request, oldest first."""
        pull = self.repository(owner, name).get_pull(number)
        return [commit.sha for commit in pull.get_commits()]

    def create_repository(self, name: str, description: str = "") -> Repository:
        user = self._gh.get_user()
        try:
            return user.create_repo(name, description=description, auto_init=True)
        except GithubException as e:
            raise IntegrationError("github", f"Repository {name} wasn't created", str(e.data)) from e

    def create_branch(self, repo: Repository, name: str, source: str | None = None) -> None:
        """Create ``name`` pointing at the head of ``source`` (default branch if omitted)."""
        source = source or repo.default_branch
        sha = repo.get_branch(source).commit.sha
        repo.create_git_ref(ref=f"refs/heads/{name}", sha=sha)

    def create_sub_branches(
        self, repo: Repository, source: str, count: int, prefix: str
    ) -> list[str]:
        """Create ``prefix1 .. prefixN`` branches starting from ``source``."""
        names = [f"{prefix}{i}" for i in range(1, count + 1)]
        for name in names:
            self.create_branch(repo, name, source)
        return names

    def commit_file(self, repo: Repository, branch: str, file: EnvironmentFile) -> None:
        repo.create_file(
            path=file.path,
            message=f"feat: Add {file.path}",
            content=file.content,
            branch=branch,
        )

    def add_web_hook(self, repo: Repository, url: str) -> None:
        repo.create_hook(
            name="web",
            config={"url": url, "content_type": "json"},
            events=["pull_request"],
            active=True,
        )

    def delete_repository(self, owner: str, name: str) -> None:
        try:
            self._gh.get_repo(f"{owner}/{name}").delete()
        except UnknownObjectException:
            logger.warning(f"Repository {owner}/{name} was already deleted")

    def close(self) -> None:
        self._gh.close()

    def _files_loader(
        self, repo: Repository, branch: str, sha: str
    ) -> Callable[[], list[EnvironmentFile]]:
        def load() -> list[EnvironmentFile]:
            tree = repo.get_git_tree(sha, recursive=True)
            files: list[EnvironmentFile] = []
            for item in tree.tree:
                if item.type != "blob":
                    continue
                try:
                    content = repo.get_contents(item.path, ref=branch)
                except GithubException:
                    logger.warning(f"Skipping unreadable {repo.full_name}:{branch}/{item.path}")
                    continue
                if isinstance(content, list) or content.decoded_content is None:
                    continue
                files.append(EnvironmentFile(path=item.path, content=content.decoded_content))
            return files

        return load
