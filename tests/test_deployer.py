from __future__ import annotations

import threading
import time
import zipfile
from pathlib import Path
from typing import Any

import pytest

from zip_pages import deployer
from zip_pages.cloudflare_api import CloudflareAPIError
from zip_pages.config import Config
from zip_pages.deployer import DeployError, InputError, deploy_archive
from zip_pages.git_repo import GitCommandError


def _config(tmp_path: Path) -> Config:
    return Config(
        github_user="octo",
        github_token="gh-token",
        cf_account_id="account",
        cf_api_token="token",
        work_dir=tmp_path / "work",
        poll_attempts=2,
        poll_initial_delay=0.0,
    )


def _make_zip(path: Path, entries: dict[str, str]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, body in entries.items():
            zf.writestr(name, body)
    return path


class _Remote:
    """Records every remote side effect the pipeline performs."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.pushed_files: list[str] = []
        self.push_args: dict[str, Any] = {}

    def install(self, monkeypatch) -> None:
        def create_repo(name: str, config: Config) -> bool:
            self.calls.append(f"create_repo:{name}")
            return True

        def publish_tree(path: Path, **kwargs: Any) -> str:
            self.calls.append("push")
            self.pushed_files = sorted(p.relative_to(path).as_posix() for p in path.rglob("*") if p.is_file())
            self.push_args = kwargs
            return "abc123"

        def ensure_pages_project(project_name: str, repo_name: str, config: Config) -> bool:
            self.calls.append(f"create_project:{project_name}")
            return False

        def trigger_deployment(project_name: str, config: Config, branch: str | None = None) -> dict[str, Any]:
            self.calls.append(f"trigger:{project_name}")
            return {"id": "dep-1"}

        monkeypatch.setattr(deployer.github_api, "create_repo", create_repo)
        monkeypatch.setattr(deployer.github_api, "repo_exists", lambda name, config: True)
        monkeypatch.setattr(deployer.github_api, "branch_exists", lambda name, branch, config: True)
        monkeypatch.setattr(deployer.git_repo, "publish_tree", publish_tree)
        monkeypatch.setattr(deployer.cloudflare_api, "ensure_pages_project", ensure_pages_project)
        monkeypatch.setattr(deployer.cloudflare_api, "project_exists", lambda name, config: True)
        monkeypatch.setattr(deployer.cloudflare_api, "trigger_deployment", trigger_deployment)


def test_deploy_archive_publishes_normalized_tree(monkeypatch, tmp_path: Path) -> None:
    remote = _Remote()
    remote.install(monkeypatch)
    config = _config(tmp_path)
    archive = _make_zip(
        tmp_path / "upload.zip",
        {"site/index.html": "<html></html>", "site/style.css": "body{}", "site/.DS_Store": ""},
    )

    result = deploy_archive(archive, "Toko Kue", config, submitter="Ayu")

    assert result.repo == "site-toko-kue"
    assert result.url == "https://site-toko-kue.pages.dev"
    assert result.repo_url == "https://github.com/octo/site-toko-kue"
    assert remote.pushed_files == ["index.html", "style.css"]
    assert remote.calls == [
        "create_repo:site-toko-kue",
        "push",
        "create_project:site-toko-kue",
        "trigger:site-toko-kue",
    ]
    assert remote.push_args["author_name"] == "Ayu"
    assert "submitted by Ayu" in remote.push_args["message"]
    assert remote.push_args["remote_url"] == "https://github.com/octo/site-toko-kue.git"

    statuses = {stage.name: stage.status for stage in result.stages}
    assert statuses["create_project"] == "exists"
    assert statuses["push"] == "ok"
    assert result.as_dict()["success"] is True

    # Working trees are removed after the request; the caller owns the archive.
    assert list(config.extract_dir.iterdir()) == []
    assert archive.exists()


def test_missing_entry_document_makes_no_remote_calls(monkeypatch, tmp_path: Path) -> None:
    remote = _Remote()
    remote.install(monkeypatch)
    config = _config(tmp_path)
    archive = _make_zip(tmp_path / "upload.zip", {"docs/readme.md": "# hi", ".git/HEAD": "ref"})

    with pytest.raises(InputError) as excinfo:
        deploy_archive(archive, "demo", config)

    assert "index.html" in str(excinfo.value)
    assert remote.calls == []
    assert [stage.name for stage in excinfo.value.stages] == ["extract", "normalize"]
    assert list(config.extract_dir.iterdir()) == []


def test_corrupt_archive_is_input_error(monkeypatch, tmp_path: Path) -> None:
    remote = _Remote()
    remote.install(monkeypatch)
    archive = tmp_path / "upload.zip"
    archive.write_bytes(b"garbage")

    with pytest.raises(InputError):
        deploy_archive(archive, "demo", _config(tmp_path))
    assert remote.calls == []


def test_invalid_project_name_is_input_error(tmp_path: Path) -> None:
    with pytest.raises(InputError):
        deploy_archive(tmp_path / "upload.zip", "???", _config(tmp_path))


def test_push_failure_aborts(monkeypatch, tmp_path: Path) -> None:
    remote = _Remote()
    remote.install(monkeypatch)

    def failing_publish(path: Path, **kwargs: Any) -> str:
        raise GitCommandError("Git command failed (exit 128)")

    monkeypatch.setattr(deployer.git_repo, "publish_tree", failing_publish)
    config = _config(tmp_path)
    archive = _make_zip(tmp_path / "upload.zip", {"index.html": "<html></html>"})

    with pytest.raises(DeployError) as excinfo:
        deploy_archive(archive, "demo", config)

    assert not isinstance(excinfo.value, InputError)
    assert excinfo.value.stages[-1].name == "push"
    assert excinfo.value.stages[-1].status == "failed"
    assert not any(call.startswith("create_project") for call in remote.calls)
    assert list(config.extract_dir.iterdir()) == []


def test_cloudflare_failures_are_recorded_not_fatal(monkeypatch, tmp_path: Path) -> None:
    remote = _Remote()
    remote.install(monkeypatch)

    def failing_trigger(project_name: str, config: Config, branch: str | None = None) -> dict[str, Any]:
        raise CloudflareAPIError("Cloudflare API POST failed: 429")

    def failing_repo(name: str, config: Config) -> bool:
        raise RuntimeError("rate limited")

    monkeypatch.setattr(deployer.cloudflare_api, "trigger_deployment", failing_trigger)
    monkeypatch.setattr(deployer.github_api, "create_repo", failing_repo)
    monkeypatch.setattr(deployer.cloudflare_api, "project_exists", lambda name, config: False)
    archive = _make_zip(tmp_path / "upload.zip", {"index.html": "<html></html>"})

    result = deploy_archive(archive, "demo", _config(tmp_path))

    statuses = {stage.name: stage.status for stage in result.stages}
    assert statuses["create_repo"] == "failed"
    assert statuses["push"] == "ok"
    assert statuses["confirm_project"] == "unconfirmed"
    assert statuses["trigger_build"] == "failed"


def test_same_project_deploys_are_serialized(monkeypatch, tmp_path: Path) -> None:
    remote = _Remote()
    remote.install(monkeypatch)
    active = {"now": 0, "max": 0}
    guard = threading.Lock()

    def slow_publish(path: Path, **kwargs: Any) -> str:
        with guard:
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
        time.sleep(0.05)
        with guard:
            active["now"] -= 1
        return "abc123"

    monkeypatch.setattr(deployer.git_repo, "publish_tree", slow_publish)
    config = _config(tmp_path)
    archives = [
        _make_zip(tmp_path / f"upload-{i}.zip", {"index.html": f"<p>{i}</p>"}) for i in range(3)
    ]
    errors: list[BaseException] = []

    def run(archive: Path) -> None:
        try:
            deploy_archive(archive, "Same Name", config)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(archive,)) for archive in archives]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert active["max"] == 1
    assert deployer._LOCKS == {}


def test_different_projects_deploy_concurrently(monkeypatch, tmp_path: Path) -> None:
    remote = _Remote()
    remote.install(monkeypatch)
    active = {"now": 0, "max": 0}
    guard = threading.Lock()
    # Each push waits for the other; a serialized pipeline would break the barrier.
    both_pushing = threading.Barrier(2, timeout=5)

    def slow_publish(path: Path, **kwargs: Any) -> str:
        with guard:
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
        both_pushing.wait()
        with guard:
            active["now"] -= 1
        return "abc123"

    monkeypatch.setattr(deployer.git_repo, "publish_tree", slow_publish)
    config = _config(tmp_path)
    jobs = [
        (_make_zip(tmp_path / f"upload-{name}.zip", {"index.html": f"<p>{name}</p>"}), name)
        for name in ("First Site", "Second Site")
    ]
    results: list[str] = []
    errors: list[BaseException] = []

    def run(archive: Path, name: str) -> None:
        try:
            results.append(deploy_archive(archive, name, config).repo)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=run, args=job) for job in jobs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert active["max"] == 2
    assert sorted(results) == ["site-first-site", "site-second-site"]
    assert deployer._LOCKS == {}


def test_lock_entry_is_released_after_failure(monkeypatch, tmp_path: Path) -> None:
    remote = _Remote()
    remote.install(monkeypatch)
    archive = _make_zip(tmp_path / "upload.zip", {"notes.txt": "no entry document"})

    with pytest.raises(InputError):
        deploy_archive(archive, "demo", _config(tmp_path))

    assert deployer._LOCKS == {}
