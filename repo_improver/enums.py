"""Enumerations for repo-improver providers, modes and processing states."""

from enum import Enum


class GitProviderType(str, Enum):
    """Git hosting backends, plus the ``auto`` detection selector."""

    GITHUB = "github"
    GITEA = "gitea"
    AUTO = "auto"

    def __str__(self) -> str:
        return self.value


class ModelProvider(str, Enum):
    """Model backends the opencode agent can be pointed at.

    - ollama: local Ollama server (OLLAMA_HOST / OLLAMA_MODEL)
    - opencode: hosted OpenCode Zen endpoint (ZEN_HOST / ZEN_MODEL / ZEN_API_KEY)
    """

    OLLAMA = "ollama"
    OPENCODE = "opencode"

    def __str__(self) -> str:
        return self.value


class RunMode(str, Enum):
    """What the agent is asked to do for each repository.

    - agents-md: one-shot analysis that writes AGENTS.md on a timestamped branch
    - autonomous: continuous improvement on the long-lived work branch
    """

    AGENTS_MD = "agents-md"
    AUTONOMOUS = "autonomous"

    def __str__(self) -> str:
        return self.value


class ProcessingState(str, Enum):
    """Per-repository processing states.

    Happy path for continuous mode:
    CLONING -> BRANCH_READY -> IMPROVING -> TESTING -> COMMITTED -> PUBLISHING -> PUBLISHED
    """

    CLONING = "cloning"
    BRANCH_READY = "branch_ready"
    IMPROVING = "improving"
    NO_CHANGE = "no_change"
    TESTING = "testing"
    COMMITTED = "committed"
    REVERTED = "reverted"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    PUBLISH_FAILED = "publish_failed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        ProcessingState.NO_CHANGE,
        ProcessingState.REVERTED,
        ProcessingState.PUBLISHED,
        ProcessingState.PUBLISH_FAILED,
        ProcessingState.FAILED,
    }
)

# Forward-only transitions. FAILED is reachable from any non-terminal state.
ALLOWED_TRANSITIONS: dict[ProcessingState, frozenset[ProcessingState]] = {
    ProcessingState.CLONING: frozenset({ProcessingState.BRANCH_READY}),
    ProcessingState.BRANCH_READY: frozenset({ProcessingState.IMPROVING}),
    ProcessingState.IMPROVING: frozenset(
        {ProcessingState.NO_CHANGE, ProcessingState.TESTING, ProcessingState.COMMITTED}
    ),
    ProcessingState.TESTING: frozenset({ProcessingState.COMMITTED, ProcessingState.REVERTED}),
    ProcessingState.COMMITTED: frozenset({ProcessingState.PUBLISHING}),
    ProcessingState.PUBLISHING: frozenset({ProcessingState.PUBLISHED, ProcessingState.PUBLISH_FAILED}),
}
