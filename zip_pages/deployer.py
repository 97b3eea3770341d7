from __future__ import annotations

import shutil
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from . import cloudflare_api, git_repo, github_api
from .archive import extract_archive
from .config import Config
from .polling import wait_until
from .site_paths import normalize_tree, repo_name

STAGE_OK = "ok"
STAGE_EXISTS = "exists"
STAGE_UNCONFIRMED = "unconfirmed"
STAGE_FAILED = "failed"

# A failure in one of these aborts the deploy; any other failure is recorded and skipped.
FATAL_STAGES = frozenset({"extract", "normalize", "push"})


@dataclass
class StageResult:
    name: str
    status: str
    detail: str = ""

    def as_dict(self) -> dict[str, str]:
        return {"name": self.name, "status": self.status, "detail": self.detail}


@dataclass
class DeployResult:
    url: str
    repo: str
    repo_url: str
    stages: list[StageResult] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "url": self.url,
            "repo": self.repo,
            "repoUrl": self.repo_url,
            "stages": [stage.as_dict() for stage in self.stages],
        }


class DeployError(RuntimeError):
    """A load-bearing stage failed; carries the results of every stage that ran."""

    def __init__(self, message: str, stages: Optional[list[StageResult]] = None) -> None:
        super().__init__(message)
        self.stages = list(stages or [])


class InputError(DeployError):
    """The upload itself is unusable (bad name, bad archive, nothing to publish)."""


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


# One lock per derived repository name so identical deploys never share a
# working tree or race on the same remote. An entry lives only while some
# request holds or waits on it.
_LOCKS: dict[str, _LockEntry] = {}
_LOCKS_GUARD = threading.Lock()


@contextmanager
def _project_lock(name: str) -> Iterator[None]:
    with _LOCKS_GUARD:
        entry = _LOCKS.setdefault(name, _LockEntry())
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _LOCKS_GUARD:
            entry.holders -= 1
            if entry.holders == 0:
                del _LOCKS[name]


def _run_stage(
    stages: list[StageResult],
    name: str,
    action: Callable[[], tuple[str, str]],
    *,
    debug: bool = False,
) -> None:
    if debug:
        print(f"[deploy] Stage {name}...")
    try:
        status, detail = action()
    except Exception as exc:  # noqa: BLE001
        stages.append(StageResult(name, STAGE_FAILED, str(exc)))
        print(f"[deploy] Stage {name} failed: {exc}")
        if name not in FATAL_STAGES:
            return
        if isinstance(exc, ValueError):
            raise InputError(str(exc), stages) from exc
        raise DeployError(str(exc), stages) from exc
    stages.append(StageResult(name, status, detail))
    if debug:
        print(f"[deploy] Stage {name}: {status} {detail}".rstrip())


def _poll(check: Callable[[], bool], config: Config) -> tuple[str, str]:
    confirmed = wait_until(
        check,
        attempts=config.poll_attempts,
        initial_delay=config.poll_initial_delay,
    )
    if confirmed:
        return STAGE_OK, ""
    return STAGE_UNCONFIRMED, f"not confirmed after {config.poll_attempts} checks"


def _remove_quietly(path: Path) -> None:
    try:
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()
    except OSError as exc:
        print(f"[deploy] Cleanup failed for {path}: {exc}")


def deploy_archive(
    archive_path: Path,
    project_name: str,
    config: Config,
    *,
    submitter: Optional[str] = None,
) -> DeployResult:
    """
    Publish a zipped static site: extract, normalize, push to GitHub, build on Pages.

    Raises InputError when the upload cannot be published and DeployError when a
    load-bearing remote step fails. The archive itself is left for the caller to remove.
    """
    try:
        name = repo_name(project_name, config.repo_prefix)
    except ValueError as exc:
        raise InputError(str(exc)) from exc

    submitter = (submitter or "").strip() or None
    debug = config.debug
    stages: list[StageResult] = []
    config.extract_dir.mkdir(parents=True, exist_ok=True)

    def _extract(tree: Path) -> tuple[str, str]:
        extract_archive(archive_path, tree)
        return STAGE_OK, ""

    def _normalize(tree: Path) -> tuple[str, str]:
        normalize_tree(tree, entry_document=config.entry_document, policy=config.entry_policy)
        count = sum(1 for p in tree.rglob("*") if p.is_file())
        return STAGE_OK, f"{count} files"

    def _create_repo() -> tuple[str, str]:
        created = github_api.create_repo(name, config)
        return (STAGE_OK, "") if created else (STAGE_EXISTS, "")

    def _push(tree: Path) -> tuple[str, str]:
        message = config.commit_message
        if submitter:
            message = f"{message} (submitted by {submitter})"
        sha = git_repo.publish_tree(
            tree,
            remote_url=github_api.remote_url(name, config),
            branch=config.production_branch,
            token=config.github_token,
            author_name=submitter or config.git_author_name,
            author_email=config.git_author_email,
            message=message,
            debug=debug,
        )
        return STAGE_OK, sha

    def _create_project() -> tuple[str, str]:
        created = cloudflare_api.ensure_pages_project(name, name, config)
        return (STAGE_OK, "") if created else (STAGE_EXISTS, "")

    def _trigger_build() -> tuple[str, str]:
        deployment = cloudflare_api.trigger_deployment(name, config)
        return STAGE_OK, str(deployment.get("id", ""))

    with _project_lock(name):
        work_dir = Path(tempfile.mkdtemp(prefix=f"{name}-", dir=config.extract_dir))
        tree = work_dir / "site"
        print(f"[deploy] Processing {name}")
        try:
            _run_stage(stages, "extract", lambda: _extract(tree), debug=debug)
            _run_stage(stages, "normalize", lambda: _normalize(tree), debug=debug)
            _run_stage(stages, "create_repo", _create_repo, debug=debug)
            _run_stage(
                stages,
                "confirm_repo",
                lambda: _poll(lambda: github_api.repo_exists(name, config), config),
                debug=debug,
            )
            _run_stage(stages, "push", lambda: _push(tree), debug=debug)
            _run_stage(
                stages,
                "confirm_push",
                lambda: _poll(lambda: github_api.branch_exists(name, config.production_branch, config), config),
                debug=debug,
            )
            _run_stage(stages, "create_project", _create_project, debug=debug)
            _run_stage(
                stages,
                "confirm_project",
                lambda: _poll(lambda: cloudflare_api.project_exists(name, config), config),
                debug=debug,
            )
            _run_stage(stages, "trigger_build", _trigger_build, debug=debug)
        finally:
            _remove_quietly(work_dir)

    url = cloudflare_api.pages_url(name)
    print(f"[deploy] {name} published: {url}")
    return DeployResult(url=url, repo=name, repo_url=github_api.repo_url(name, config), stages=stages)
