"""Supported course languages and testing environments."""

from __future__ import annotations

from dataclasses import dataclass

from courseflow.errors import ConfigurationError
from courseflow.model import Course, EnvironmentFile

FRAMEWORKS = ("junit", "spek", "bash")


@dataclass(frozen=True)
class Language:
    name: str
    extensions: tuple[str, ...]
    moss_language: str  # language id understood by the Moss server
    testing_languages: tuple[str, ...]
    frameworks: tuple[str, ...]

    def owns(self, file: EnvironmentFile) -> bool:
        return any(file.path.endswith(ext) for ext in self.extensions)

    def filter(self, files: list[EnvironmentFile]) -> list[EnvironmentFile]:
        return [f for f in files if self.owns(f)]


LANGUAGES: dict[str, Language] = {
    "java": Language(
        name="java",
        extensions=(".java",),
        moss_language="java",
        testing_languages=("java", "kotlin"),
        frameworks=("junit", "spek"),
    ),
    "kotlin": Language(
        name="kotlin",
        extensions=(".kt",),
        moss_language="ascii",
        testing_languages=("kotlin", "java"),
        frameworks=("junit", "spek"),
    ),
    "cpp": Language(
        name="cpp",
        extensions=(".cpp", ".cc", ".h", ".hpp"),
        moss_language="cc",
        testing_languages=("bash",),
        frameworks=("bash",),
    ),
}


def get_language(name: str) -> Language:
    language = LANGUAGES.get(name)
    if language is None:
        raise ConfigurationError(f"Language {name} is not supported")
    return language


def language_of(course: Course) -> Language:
    return get_language(course.language)


def validate_environment(language: str, testing_language: str, framework: str) -> Language:
    """Check that the language triple describes a supported environment.

    Raises ConfigurationError naming the offending part otherwise.
    """
    lang = get_language(language)

    if testing_language not in LANGUAGES and testing_language != "bash":
        raise ConfigurationError(f"Testing language {testing_language} is not supported")
    if framework not in FRAMEWORKS:
        raise ConfigurationError(f"Testing framework {framework} is not supported")
    if testing_language not in lang.testing_languages:
        raise ConfigurationError(
            f"{language} courses can't be tested with {testing_language}"
        )
    if framework not in lang.frameworks:
        raise ConfigurationError(
            f"{language} courses can't be tested with {framework} framework"
        )
    return lang
