"""
Run orchestration over the repository list.

Repositories are processed sequentially, in file order, with a fixed delay
between them. One repository failing never stops the run, and neither does a
malformed line in the list: it is reported as a failed repository. The
summary's exit code reports whether anything failed.

Example:
    >>> entries = read_repository_list(settings.repos_file)
    >>> summary = await RunOrchestrator(settings, processor, registry, artifacts).run(entries)
    >>> summary.exit_code
    0
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from repo_improver.config.settings import ImproverSettings
from repo_improver.engine.audit import ArtifactStore
from repo_improver.engine.processor import RepositoryProcessor
from repo_improver.enums import ProcessingState
from repo_improver.exceptions import ConfigurationError, InvalidRepositoryReferenceError
from repo_improver.models.domain import RepositoryReference, RepositoryResult, RunSummary
from repo_improver.providers.detection import ProviderRegistry

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RepositoryListEntry:
    """One non-comment line of the repository list.

    Attributes:
        reference: The parsed reference, or the unvalidated line when invalid
        error: ``path:line: reason`` for lines that are not valid references
    """

    reference: RepositoryReference
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.error is None


def read_repository_list(path: Path) -> list[RepositoryListEntry]:
    """Read repository references, one per line.

    Lines are stripped; blank lines and ``#`` comments are skipped. A line
    that is not a valid reference becomes an entry carrying its error, so
    it can be reported without stopping the other repositories.

    Raises:
        ConfigurationError: If the file cannot be read
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read repository list {path}: {e}") from e

    entries: list[RepositoryListEntry] = []
    for number, line in enumerate(content.splitlines(), start=1):
        value = line.strip()
        if not value or value.startswith("#"):
            continue
        try:
            entries.append(RepositoryListEntry(RepositoryReference.parse(value)))
        except InvalidRepositoryReferenceError as e:
            entries.append(RepositoryListEntry(RepositoryReference(raw=value), error=f"{path}:{number}: {e.message}"))
    return entries


class RunOrchestrator:
    """Processes every repository in the list and summarises the run."""

    def __init__(
        self,
        settings: ImproverSettings,
        processor: RepositoryProcessor,
        registry: ProviderRegistry,
        artifacts: ArtifactStore,
    ):
        self.settings = settings
        self.processor = processor
        self.registry = registry
        self.artifacts = artifacts

    async def run(
        self,
        entries: Sequence[RepositoryListEntry | RepositoryReference] | None = None,
    ) -> RunSummary:
        """Process ``entries`` (default: the configured repository list).

        Provider authentication is checked up front, but a provider without
        working credentials is only a warning: repositories on the other
        provider can still be processed.
        """
        if entries is None:
            entries = read_repository_list(self.settings.repos_file)
        items = [entry if isinstance(entry, RepositoryListEntry) else RepositoryListEntry(entry) for entry in entries]

        self.artifacts.prepare()
        summary = RunSummary()

        async with self.registry:
            await self.registry.verify_authentication()

            total = len(items)
            log.info("run_started", total=total, mode=str(self.settings.run_mode), model=self.settings.model_ref)

            for index, item in enumerate(items, start=1):
                log.info("repository_started", position=f"[{index}/{total}]", repo=item.reference.raw)
                if item.valid:
                    summary.results.append(await self._process(item.reference))
                else:
                    summary.results.append(self._invalid(item))
                    continue

                if index < total and self.settings.repo_delay > 0:
                    await asyncio.sleep(self.settings.repo_delay)

        self._log_summary(summary)
        return summary

    @staticmethod
    def _invalid(item: RepositoryListEntry) -> RepositoryResult:
        log.error("repository_invalid", repo=item.reference.raw, error=item.error)
        return RepositoryResult(
            reference=item.reference,
            state=ProcessingState.FAILED,
            error=item.error,
            history=[ProcessingState.FAILED],
        )

    async def _process(self, reference: RepositoryReference) -> RepositoryResult:
        result = await self.processor.process(reference)
        if result.succeeded:
            log.info("repository_succeeded", repo=reference.raw, state=str(result.state))
        elif result.state == ProcessingState.REVERTED:
            log.error("repository_reverted", repo=reference.raw, detail="tests failed, needs human review")
        else:
            log.error("repository_failed", repo=reference.raw, state=str(result.state), error=result.error)
        return result

    def _log_summary(self, summary: RunSummary) -> None:
        log.info(
            "run_summary",
            total=summary.total,
            succeeded=summary.succeeded,
            failed=summary.failed,
            ledger=str(self.artifacts.ledger.path),
        )
        if summary.failed:
            failed = [result.reference.raw for result in summary.results if not result.succeeded]
            log.error("run_completed_with_failures", repositories=failed)
