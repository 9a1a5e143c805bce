"""
Domain models for repo-improver.

These are the transient values passed between the pipeline stages: the
repository reference read from the input list, the improvement result, pull
requests returned by providers, and the per-repository and per-run outcomes.

Example:
    >>> ref = RepositoryReference.parse("acme/widgets")
    >>> ref.full_name
    'acme/widgets'
    >>> RepositoryReference.parse("https://gitea.example.com/acme/widgets.git").slug
    'gitea.example.com_acme_widgets.git'
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime

from repo_improver.enums import ProcessingState
from repo_improver.exceptions import InvalidRepositoryReferenceError
from repo_improver.git.parser import GitUrlParser

URL_PREFIX = re.compile(r"^https?://")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class RepositoryReference:
    """A repository named either as ``owner/repo`` shorthand or a full URL.

    Attributes:
        raw: The reference exactly as it appeared in the input list
    """

    raw: str

    @classmethod
    def parse(cls, value: str) -> "RepositoryReference":
        """Validate and wrap a repository reference.

        Raises:
            InvalidRepositoryReferenceError: If the value is empty, contains
                whitespace, or is neither a URL nor an owner/repo path
        """
        raw = value.strip()
        if not raw:
            raise InvalidRepositoryReferenceError(value, reason="Empty reference")
        if any(ch.isspace() for ch in raw):
            raise InvalidRepositoryReferenceError(raw, reason="Reference must not contain whitespace")

        if URL_PREFIX.match(raw):
            # Fail fast on malformed URLs
            GitUrlParser(raw)
        elif "/" not in raw.strip("/"):
            raise InvalidRepositoryReferenceError(raw, reason="Expected owner/repo or an http(s) URL")

        return cls(raw=raw)

    @property
    def is_url(self) -> bool:
        return bool(URL_PREFIX.match(self.raw))

    @property
    def host(self) -> str | None:
        """Host for URL references, None for shorthand."""
        if not self.is_url:
            return None
        return GitUrlParser(self.raw).host

    @property
    def full_name(self) -> str:
        """``owner/repo`` for hosting API calls."""
        if self.is_url:
            return GitUrlParser(self.raw).full_name
        return self.raw.strip("/").removesuffix(".git")

    @property
    def path(self) -> str:
        """Repository path on its host (protocol and host stripped)."""
        if self.is_url:
            return GitUrlParser(self.raw).path
        return self.raw.strip("/").removesuffix(".git")

    @property
    def slug(self) -> str:
        """Filesystem-safe name: protocol stripped, ``/`` replaced by ``_``."""
        return URL_PREFIX.sub("", self.raw).replace("/", "_")

    def __str__(self) -> str:
        return self.raw


@dataclass
class Issue:
    """Open issue surfaced to the agent as maintainer guidance."""

    number: int
    title: str
    url: str
    labels: list[str] = field(default_factory=list)
    body: str = ""


@dataclass
class PullRequest:
    """Pull request as returned by a git provider."""

    number: int
    title: str
    head: str
    base: str
    url: str
    state: str = "open"
    created_at: datetime | None = None


@dataclass(frozen=True)
class PullRequestRecord:
    """A created or reused pull request, as appended to the PR ledger.

    Attributes:
        repository: Raw repository reference
        url: Web URL of the pull request
        number: Provider-scoped PR number
        base: Base branch the PR targets
        created: False when an already-open PR was reused
        timestamp: When the record was produced (UTC)
    """

    repository: str
    url: str
    number: int
    base: str
    created: bool
    timestamp: datetime = field(default_factory=utc_now)

    def csv_row(self) -> list[str]:
        return [self.repository, self.url, self.timestamp.strftime(TIMESTAMP_FORMAT)]


@dataclass
class AgentRun:
    """Outcome of one external agent invocation.

    A timeout or non-zero exit is "completed with warnings"; the caller still
    inspects the workspace for a usable partial result.
    """

    exit_code: int | None
    timed_out: bool
    output: str
    duration: float = 0.0

    @property
    def completed_with_warnings(self) -> bool:
        return self.timed_out or self.exit_code != 0


@dataclass
class ImprovementResult:
    """What the improvement runner produced for one repository.

    Attributes:
        changes_made: The expected artifact exists (one-shot) or the working
            tree differs from the checked-out branch (continuous)
        log: Captured agent and test output
        tests_passed: None when tests were not run
        timed_out: The agent hit its deadline on the final attempt
        attempts: Number of agent invocations
        test_command: Command used to run the project's tests, if any
    """

    changes_made: bool
    log: str = ""
    tests_passed: bool | None = None
    timed_out: bool = False
    attempts: int = 1
    test_command: list[str] | None = None


@dataclass
class RepositoryResult:
    """Final outcome for one repository in the run."""

    reference: RepositoryReference
    state: ProcessingState
    pull_request: PullRequestRecord | None = None
    error: str | None = None
    history: list[ProcessingState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state in (ProcessingState.NO_CHANGE, ProcessingState.PUBLISHED)


@dataclass
class RunSummary:
    """Aggregate outcome of a run over the repository list."""

    results: list[RepositoryResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

