"""Audit trail and output artifacts.

Two places record what a run did:

- ``.opencode/`` inside the target repository: STATE.md, IMPROVEMENTS.md and
  PLAN.md, committed with the changes as a human-readable history. Entries
  are appended, never rewritten.
- The output directory: per-repository analysis logs, backups of generated
  files, and the append-only pull request ledger (CSV).
"""

import csv
import shutil
from datetime import datetime
from pathlib import Path

import structlog

from repo_improver.models.domain import PullRequestRecord, RepositoryReference, utc_now
from repo_improver.rendering import SecureTemplateEngine

log = structlog.get_logger(__name__)

STATE_DIR = ".opencode"
STATE_FILES = ("README.md", "STATE.md", "IMPROVEMENTS.md", "PLAN.md")
LEDGER_HEADER = ["repository", "pr_url", "timestamp"]


def audit_timestamp(moment: datetime | None = None) -> str:
    return (moment or utc_now()).strftime("%Y-%m-%d %H:%M:%S UTC")


class StateTracker:
    """Reads and appends to the ``.opencode`` files of one workspace."""

    def __init__(self, workspace_path: Path, templates: SecureTemplateEngine, state_dir: str = STATE_DIR):
        self.root = workspace_path / state_dir
        self.state_dir = state_dir
        self.templates = templates

    @property
    def exists(self) -> bool:
        return self.root.is_dir()

    @property
    def state_file(self) -> Path:
        return self.root / "STATE.md"

    @property
    def improvements_file(self) -> Path:
        return self.root / "IMPROVEMENTS.md"

    def relative(self, name: str) -> str:
        return f"{self.state_dir}/{name}"

    def initialize(self, work_branch: str) -> list[str]:
        """Create the seed files. Returns their paths relative to the workspace."""
        self.root.mkdir(parents=True, exist_ok=True)
        context = {"work_branch": work_branch, "date": utc_now().strftime("%Y-%m-%d")}
        for name in STATE_FILES:
            content = self.templates.render(f"state/{name}.j2", context)
            (self.root / name).write_text(content, encoding="utf-8")
        log.info("state_initialized", path=str(self.root))
        return [self.relative(name) for name in STATE_FILES]

    def read_state(self) -> str:
        if not self.state_file.is_file():
            return ""
        return self.state_file.read_text(encoding="utf-8")

    def _append(self, target: Path, template: str, **context: object) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        entry = self.templates.render(template, {"timestamp": audit_timestamp(), **context})
        with open(target, "a", encoding="utf-8") as f:
            f.write(entry)
        log.debug("audit_entry_appended", file=target.name, template=template)

    def record_no_change(self) -> None:
        self._append(self.state_file, "state/entry_no_change.md.j2")

    def record_test_failure(self, test_command: str | None, analysis_log: str) -> None:
        self._append(
            self.state_file,
            "state/entry_test_failure.md.j2",
            test_command=test_command,
            analysis_log=analysis_log,
        )

    def record_improvement(self, model: str, test_status: str) -> None:
        self._append(
            self.improvements_file,
            "state/entry_improvement.md.j2",
            model=model,
            test_status=test_status,
        )


class PullRequestLedger:
    """Append-only CSV of published pull requests."""

    def __init__(self, path: Path):
        self.path = path

    def initialize(self) -> None:
        """Create the file with its header unless it already exists."""
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", newline="", encoding="utf-8") as f:
            csv.writer(f).writerow(LEDGER_HEADER)

    def record(self, pull_request: PullRequestRecord) -> None:
        self.initialize()
        with open(self.path, "a", newline="", encoding="utf-8") as f:
            csv.writer(f).writerow(pull_request.csv_row())
        log.info("pull_request_recorded", repo=pull_request.repository, url=pull_request.url)

    def rows(self) -> list[dict[str, str]]:
        if not self.path.exists():
            return []
        with open(self.path, newline="", encoding="utf-8") as f:
            return list(csv.DictReader(f))


class ArtifactStore:
    """Files written to the output directory."""

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.ledger = PullRequestLedger(output_dir / "prs_created.csv")

    def prepare(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.ledger.initialize()

    def analysis_log(self, reference: RepositoryReference) -> Path:
        return self.output_dir / f"{reference.slug}_analysis.log"

    def backup(self, reference: RepositoryReference, source: Path) -> Path:
        """Copy a generated file to ``<slug>_<filename>`` in the output directory."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        target = self.output_dir / f"{reference.slug}_{source.name}"
        shutil.copy2(source, target)
        log.info("artifact_backed_up", source=source.name, target=str(target))
        return target
