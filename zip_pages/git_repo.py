from __future__ import annotations

import base64
import os
import subprocess
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_REMOTE = "origin"


class GitCommandError(RuntimeError):
    """Raised when a git command exits non-zero or git is not installed."""


def _redact(text: str, secrets: Iterable[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


def _run_git(
    args: list[str],
    cwd: Path,
    *,
    env: Optional[dict[str, str]] = None,
    secrets: Iterable[str] = (),
    debug: bool = False,
) -> str:
    secrets = list(secrets)
    cmd = ["git", *args]
    if debug:
        print("[git] " + _redact(" ".join(cmd), secrets))
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=env,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise GitCommandError("git executable not found; install git and retry.") from exc

    if proc.returncode != 0:
        raise GitCommandError(
            _redact(
                f"Git command failed (exit {proc.returncode}): {' '.join(cmd)}"
                f"\n\nSTDOUT:\n{proc.stdout}\n\nSTDERR:\n{proc.stderr}",
                secrets,
            )
        )
    return proc.stdout


def _auth_header(token: str) -> str:
    encoded = base64.b64encode(f"x-access-token:{token}".encode("utf-8")).decode("ascii")
    return f"Authorization: Basic {encoded}"


def init_repo(path: Path, branch: str = "main", *, debug: bool = False) -> None:
    _run_git(["init", f"--initial-branch={branch}"], path, debug=debug)


def stage_all(path: Path, *, debug: bool = False) -> None:
    _run_git(["add", "--all"], path, debug=debug)


def commit(path: Path, message: str, author_name: str, author_email: str, *, debug: bool = False) -> str:
    """Commit whatever is staged and return the new HEAD sha."""
    env = os.environ.copy()
    env["GIT_AUTHOR_NAME"] = author_name
    env["GIT_AUTHOR_EMAIL"] = author_email
    env["GIT_COMMITTER_NAME"] = author_name
    env["GIT_COMMITTER_EMAIL"] = author_email
    _run_git(["-c", "commit.gpgsign=false", "commit", "--message", message], path, env=env, debug=debug)
    return _run_git(["rev-parse", "HEAD"], path, debug=debug).strip()


def add_remote(path: Path, name: str, url: str, *, debug: bool = False) -> None:
    _run_git(["remote", "add", name, url], path, debug=debug)


def push(
    path: Path,
    remote: str,
    branch: str,
    token: str,
    *,
    force: bool = True,
    debug: bool = False,
) -> None:
    """
    Push branch to remote, authenticating with a per-command HTTP header.

    The token is never written to .git/config and is redacted from error output.
    """
    header = _auth_header(token)
    args = ["-c", f"http.extraHeader={header}", "push"]
    if force:
        args.append("--force")
    args.extend([remote, f"{branch}:{branch}"])
    _run_git(args, path, secrets=[token, header], debug=debug)


def publish_tree(
    path: Path,
    *,
    remote_url: str,
    branch: str,
    token: str,
    author_name: str,
    author_email: str,
    message: str,
    debug: bool = False,
) -> str:
    """
    Turn a plain directory into a one-commit repository and force-push it.

    After a successful return the remote branch tree equals the local tree.
    Returns the pushed commit sha.
    """
    init_repo(path, branch, debug=debug)
    stage_all(path, debug=debug)
    sha = commit(path, message, author_name, author_email, debug=debug)
    add_remote(path, DEFAULT_REMOTE, remote_url, debug=debug)
    push(path, DEFAULT_REMOTE, branch, token, force=True, debug=debug)
    return sha
