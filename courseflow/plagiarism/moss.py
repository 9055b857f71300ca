"""Client for the Moss plagiarism detection service.

Moss speaks a line-oriented protocol over a plain TCP socket: a header
announcing the user id and options, one ``file`` record per uploaded file
(base files use id 0), then ``query 0`` which answers with the result URL.
The result page is an HTML table of matched file pairs which is scraped
for the per-pair similarity.
"""

from __future__ import annotations

import logging
import re
import socket
from dataclasses import dataclass, field
from typing import Callable

import httpx
from bs4 import BeautifulSoup

from courseflow.errors import ConfigurationError, IntegrationError
from courseflow.model import EnvironmentFile, PlagiarismMatch

logger = logging.getLogger(__name__)

SERVICE = "moss"
MAX_MATCHES = 10
SHOW_RESULTS = 250

_FILE_LABEL = re.compile(r"^(?P<path>.*?)\s*\((?P<percentage>\d+)%\)\s*$")

SocketFactory = Callable[[tuple[str, int]], socket.socket]


@dataclass
class MossResult:
    url: str
    matches: list[PlagiarismMatch] = field(default_factory=list)


def parse_moss_matches(html: str) -> list[PlagiarismMatch]:
    """Extract student pairs from a Moss result page.

    File names are expected to be ``<student>/<file>``; the student is the
    first path component.
    """
    soup = BeautifulSoup(html, "lxml")
    matches: list[PlagiarismMatch] = []
    for row in soup.find_all("tr"):
        cells = row.find_all("td")
        if len(cells) < 3:
            continue

        first, second = cells[0].find("a"), cells[1].find("a")
        if first is None or second is None:
            continue

        label_a = _FILE_LABEL.match(first.get_text(" ", strip=True))
        label_b = _FILE_LABEL.match(second.get_text(" ", strip=True))
        lines = cells[2].get_text(strip=True)
        if not label_a or not label_b or not lines.isdigit():
            continue

        matches.append(
            PlagiarismMatch(
                student_a=label_a["path"].split("/", 1)[0],
                student_b=label_b["path"].split("/", 1)[0],
                shared_lines=int(lines),
                url=first.get("href", ""),
                percentage=max(int(label_a["percentage"]), int(label_b["percentage"])),
            )
        )
    return matches


def fetch_moss_result(url: str, client: httpx.Client | None = None) -> list[PlagiarismMatch]:
    """Download a Moss result page and parse its matches."""
    http = client or httpx.Client(timeout=30.0, follow_redirects=True)
    try:
        response = http.get(url)
        if not response.is_success:
            raise IntegrationError(SERVICE, f"Moss result {url} is unavailable", response.text)
        return parse_moss_matches(response.text)
    except httpx.HTTPError as e:
        raise IntegrationError(SERVICE, f"Moss result {url} retrieving failed", str(e)) from e
    finally:
        if client is None:
            http.close()


class MossClient:
    """Collects base and solution files and submits them to Moss in one go.

    Usage:
        client = MossClient(user_id="123", language="java")
        client.upload_file(base_file, is_base=True)
        client.upload_file(solution_file, is_base=False)
        result = client.analyse()
    """

    def __init__(
        self,
        user_id: str,
        language: str,
        host: str = "moss.stanford.edu",
        port: int = 7690,
        *,
        comment: str = "",
        socket_factory: SocketFactory = socket.create_connection,
        result_loader: Callable[[str], list[PlagiarismMatch]] = fetch_moss_result,
    ) -> None:
        if not user_id:
            raise ConfigurationError("Moss user id is not configured")
        self._user_id = user_id
        self._language = language
        self._address = (host, port)
        self._comment = comment
        self._socket_factory = socket_factory
        self._result_loader = result_loader
        self._base: list[EnvironmentFile] = []
        self._solutions: list[EnvironmentFile] = []

    def upload_file(self, file: EnvironmentFile, is_base: bool) -> None:
        (self._base if is_base else self._solutions).append(file)

    def analyse(self) -> MossResult:
        if not self._solutions:
            raise ConfigurationError("Moss analysis requires at least one solution file")

        url = self._submit()
        logger.info(f"Moss results are available at {url}")
        return MossResult(url=url, matches=self._result_loader(url))

    def _submit(self) -> str:
        try:
            sock = self._socket_factory(self._address)
        except OSError as e:
            raise IntegrationError(SERVICE, f"Moss server {self._address[0]} is unreachable", str(e)) from e

        try:
            sock.sendall(
                (
                    f"moss {self._user_id}\n"
                    f"directory 1\n"
                    f"X 0\n"
                    f"maxmatches {MAX_MATCHES}\n"
                    f"show {SHOW_RESULTS}\n"
                    f"language {self._language}\n"
                ).encode()
            )
            answer = _read_line(sock)
            if answer == "no":
                sock.sendall(b"end\n")
                raise ConfigurationError(f"Moss doesn't support {self._language} language")

            for file in self._base:
                self._send_file(sock, file, 0)
            for index, file in enumerate(self._solutions, start=1):
                self._send_file(sock, file, index)

            sock.sendall(f"query 0 {self._comment}\n".encode())
            url = _read_line(sock)
            sock.sendall(b"end\n")
        except OSError as e:
            raise IntegrationError(SERVICE, "Moss submission failed", str(e)) from e
        finally:
            sock.close()

        if not url.startswith("http"):
            raise IntegrationError(SERVICE, "Moss returned no result url", url)
        return url

    def _send_file(self, sock: socket.socket, file: EnvironmentFile, file_id: int) -> None:
        name = file.path.replace(" ", "_")
        sock.sendall(f"file {file_id} {self._language} {len(file.content)} {name}\n".encode())
        sock.sendall(file.content)


def _read_line(sock: socket.socket) -> str:
    """Read one server answer, which may arrive split over several packets."""
    chunks: list[bytes] = []
    while True:
        chunk = sock.recv(1024)
        if not chunk:
            break
        chunks.append(chunk)
        if b"\n" in chunk:
            break
    return b"".join(chunks).decode().strip()
