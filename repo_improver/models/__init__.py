"""Domain models shared across the pipeline."""

from repo_improver.models.domain import (
    AgentRun,
    ImprovementResult,
    Issue,
    PullRequest,
    PullRequestRecord,
    RepositoryReference,
    RepositoryResult,
    RunSummary,
)

__all__ = [
    "AgentRun",
    "ImprovementResult",
    "Issue",
    "PullRequest",
    "PullRequestRecord",
    "RepositoryReference",
    "RepositoryResult",
    "RunSummary",
]
