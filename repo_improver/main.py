"""CLI entry point for repo-improver."""

import asyncio
import os
import sys

import click
import structlog

from repo_improver.config.settings import LOG_LEVELS, ImproverSettings
from repo_improver.engine.audit import ArtifactStore
from repo_improver.engine.improvement import ImprovementRunner
from repo_improver.engine.orchestrator import RunOrchestrator
from repo_improver.engine.processor import RepositoryProcessor
from repo_improver.engine.publisher import PullRequestPublisher
from repo_improver.exceptions import RepoImproverError
from repo_improver.models.domain import RunSummary
from repo_improver.providers.detection import ProviderRegistry
from repo_improver.providers.opencode import OpenCodeAgent
from repo_improver.rendering import SecureTemplateEngine
from repo_improver.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)


def build_orchestrator(settings: ImproverSettings) -> RunOrchestrator:
    """Wire the pipeline components from settings."""
    templates = SecureTemplateEngine()
    artifacts = ArtifactStore(settings.output_dir)
    registry = ProviderRegistry.from_settings(settings)
    agent = OpenCodeAgent(settings, base_env=dict(os.environ))
    processor = RepositoryProcessor(
        settings=settings,
        registry=registry,
        runner=ImprovementRunner(agent, settings, templates),
        publisher=PullRequestPublisher(auto_merge_delay=settings.auto_merge_delay),
        artifacts=artifacts,
        templates=templates,
    )
    return RunOrchestrator(settings, processor, registry, artifacts)


async def _run(settings: ImproverSettings) -> RunSummary:
    return await build_orchestrator(settings).run()


@click.command()
@click.option(
    "--config",
    "config_path",
    envvar="CONFIG_FILE",
    type=click.Path(dir_okay=False),
    default=None,
    help="Optional YAML file with setting overrides",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level (overrides LOG_LEVEL)",
)
def main(config_path: str | None, log_level: str | None) -> None:
    """repo-improver: run an AI coding agent over a list of repositories and open pull requests."""
    try:
        settings = ImproverSettings.load(config_path)
        configure_logging(log_level or settings.log_level, settings.log_format)
        settings.check_requirements()

        log.info(
            "starting",
            mode=str(settings.run_mode),
            model=settings.model_ref,
            git_provider=str(settings.git_provider),
            repos_file=str(settings.repos_file),
        )
        summary = asyncio.run(_run(settings))
    except RepoImproverError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("fatal_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)

    sys.exit(summary.exit_code)


if __name__ == "__main__":
    main()
