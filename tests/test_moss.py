"""Tests for courseflow.plagiarism.moss."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest

from courseflow.errors import ConfigurationError, IntegrationError
from courseflow.model import EnvironmentFile, PlagiarismMatch
from courseflow.plagiarism.moss import MossClient, fetch_moss_result, parse_moss_matches

RESULT_PAGE = """
<html><body>
<table>
<tr><th>File 1</th><th>File 2</th><th>Lines Matched</th></tr>
<tr>
  <td><a href="http://moss.stanford.edu/results/1/match0.html">alice/Sol.java (85%)</a></td>
  <td><a href="http://moss.stanford.edu/results/1/match0.html">bob/Sol.java (80%)</a></td>
  <td align="right">42</td>
</tr>
<tr>
  <td><a href="http://moss.stanford.edu/results/1/match1.html">carol/Sol.java (12%)</a></td>
  <td><a href="http://moss.stanford.edu/results/1/match1.html">alice/Sol.java (30%)</a></td>
  <td align="right">7</td>
</tr>
</table>
</body></html>
"""


class FakeSocket:
    def __init__(self, answers: list[bytes]):
        self.answers = list(answers)
        self.sent = b""
        self.closed = False

    def sendall(self, data: bytes) -> None:
        self.sent += data

    def recv(self, size: int) -> bytes:
        return self.answers.pop(0) if self.answers else b""

    def close(self) -> None:
        self.closed = True


def make_client(sock: FakeSocket, loader=None, user_id: str = "123456") -> MossClient:
    return MossClient(
        user_id,
        "java",
        comment="teacher/algorithms/task-1",
        socket_factory=lambda address: sock,
        result_loader=loader or MagicMock(return_value=[]),
    )


class TestParseMossMatches:
    def test_parses_student_pairs(self):
        matches = parse_moss_matches(RESULT_PAGE)

        assert matches == [
            PlagiarismMatch("alice", "bob", 42, "http://moss.stanford.edu/results/1/match0.html", 85),
            PlagiarismMatch("carol", "alice", 7, "http://moss.stanford.edu/results/1/match1.html", 30),
        ]

    def test_empty_page(self):
        assert parse_moss_matches("<html><body>No matches</body></html>") == []


class TestFetchMossResult:
    def test_downloads_and_parses(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=RESULT_PAGE)

        with httpx.Client(transport=httpx.MockTransport(handler)) as client:
            matches = fetch_moss_result("http://moss.stanford.edu/results/1", client)

        assert len(matches) == 2

    def test_unavailable_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="oops")

        with httpx.Client(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(IntegrationError):
                fetch_moss_result("http://moss.stanford.edu/results/1", client)


class TestMossClient:
    def test_submission_protocol(self):
        sock = FakeSocket([b"yes\n", b"http://moss.stanford.edu/results/1\n"])
        loader = MagicMock(return_value=[PlagiarismMatch("alice", "bob", 1, "u", 50)])
        client = make_client(sock, loader)
        client.upload_file(EnvironmentFile("base/Base.java", b"class Base {}"), is_base=True)
        client.upload_file(EnvironmentFile("alice/Sol.java", b"class A {}"), is_base=False)
        client.upload_file(EnvironmentFile("bob/Sol.java", b"class B {}"), is_base=False)

        result = client.analyse()

        assert result.url == "http://moss.stanford.edu/results/1"
        assert result.matches == loader.return_value
        loader.assert_called_once_with("http://moss.stanford.edu/results/1")
        sent = sock.sent.decode()
        assert sent.startswith("moss 123456\ndirectory 1\nX 0\nmaxmatches 10\nshow 250\nlanguage java\n")
        assert "file 0 java 13 base/Base.java\nclass Base {}" in sent
        assert "file 1 java 10 alice/Sol.java\nclass A {}" in sent
        assert "file 2 java 10 bob/Sol.java\nclass B {}" in sent
        assert sent.endswith("query 0 teacher/algorithms/task-1\nend\n")
        assert sock.closed

    def test_answers_split_across_packets(self):
        sock = FakeSocket([b"ye", b"s\n", b"http://moss.stanford.edu/", b"results/2", b"\n"])
        client = make_client(sock)
        client.upload_file(EnvironmentFile("alice/Sol.java", b"class A {}"), is_base=False)

        result = client.analyse()

        assert result.url == "http://moss.stanford.edu/results/2"
        assert sock.answers == []

    def test_requires_solutions(self):
        client = make_client(FakeSocket([]))
        client.upload_file(EnvironmentFile("base/Base.java", b""), is_base=True)

        with pytest.raises(ConfigurationError):
            client.analyse()

    def test_unsupported_language(self):
        sock = FakeSocket([b"no\n"])
        client = make_client(sock)
        client.upload_file(EnvironmentFile("alice/Sol.java", b""), is_base=False)

        with pytest.raises(ConfigurationError, match="java"):
            client.analyse()
        assert sock.sent.endswith(b"end\n")
        assert sock.closed

    def test_server_error_answer(self):
        sock = FakeSocket([b"yes\n", b"Error: too many files\n"])
        client = make_client(sock)
        client.upload_file(EnvironmentFile("alice/Sol.java", b""), is_base=False)

        with pytest.raises(IntegrationError, match="too many files"):
            client.analyse()

    def test_unreachable_server(self):
        def refuse(address):
            raise ConnectionRefusedError("refused")

        client = MossClient("123456", "java", socket_factory=refuse)
        client.upload_file(EnvironmentFile("alice/Sol.java", b""), is_base=False)

        with pytest.raises(IntegrationError):
            client.analyse()

    def test_requires_user_id(self):
        with pytest.raises(ConfigurationError):
            MossClient("", "java")
