from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .config import Config

API_BASE = "https://api.github.com"


class GitHubAPIError(RuntimeError):
    """Raised when GitHub responds with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class RepoFile:
    path: str
    content: str
    sha: str


def _headers(config: Config) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {config.github_token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


def _request(method: str, path: str, config: Config, **kwargs: Any) -> Any:
    """
    Generic GitHub REST helper.

    Returns the decoded JSON body (None for empty responses) and raises
    GitHubAPIError with the HTTP status on failure.
    """
    url = f"{API_BASE}{path}"
    headers = kwargs.pop("headers", {})
    headers.update(_headers(config))

    resp = requests.request(method, url, headers=headers, timeout=60, **kwargs)
    if not resp.text:
        data: Any = None
    else:
        try:
            data = resp.json()
        except ValueError:
            raise GitHubAPIError(
                f"GitHub API {method} {path} returned non-JSON response: "
                f"{resp.status_code} {resp.text}",
                status_code=resp.status_code,
            )

    if not resp.ok:
        raise GitHubAPIError(
            f"GitHub API {method} {path} failed: {resp.status_code} {data}",
            status_code=resp.status_code,
        )
    return data


def _clean_path(path: str) -> str:
    cleaned = path.strip().strip("/")
    if not cleaned or ".." in cleaned.split("/"):
        raise ValueError(f"Invalid repository file path: {path!r}")
    return cleaned


def repo_url(name: str, config: Config) -> str:
    return f"https://github.com/{config.github_user}/{name}"


def remote_url(name: str, config: Config) -> str:
    return f"{repo_url(name, config)}.git"


def create_repo(name: str, config: Config, *, private: bool = False) -> bool:
    """
    Create a repository under the authenticated user.

    Returns True when created and False when a repository with this name already exists.
    """
    try:
        _request(
            "POST",
            "/user/repos",
            config,
            json={"name": name, "private": private, "auto_init": False},
        )
    except GitHubAPIError as exc:
        if exc.status_code == 422 and "already exists" in str(exc).lower():
            return False
        raise
    return True


def repo_exists(name: str, config: Config) -> bool:
    try:
        _request("GET", f"/repos/{config.github_user}/{name}", config)
    except GitHubAPIError as exc:
        if exc.status_code == 404:
            return False
        raise
    return True


def branch_exists(name: str, branch: str, config: Config) -> bool:
    try:
        _request("GET", f"/repos/{config.github_user}/{name}/branches/{quote(branch, safe='')}", config)
    except GitHubAPIError as exc:
        if exc.status_code == 404:
            return False
        raise
    return True


def list_files(repo: str, config: Config, branch: Optional[str] = None) -> List[str]:
    """Return every file path on the branch, sorted."""
    ref = quote(branch or config.production_branch, safe="")
    data = _request(
        "GET",
        f"/repos/{config.github_user}/{repo}/git/trees/{ref}",
        config,
        params={"recursive": "1"},
    )
    entries = (data or {}).get("tree", [])
    return sorted(entry["path"] for entry in entries if entry.get("type") == "blob")


def read_file(repo: str, path: str, config: Config, branch: Optional[str] = None) -> RepoFile:
    """Fetch a text file along with its blob sha, which is required to update it."""
    clean = _clean_path(path)
    data = _request(
        "GET",
        f"/repos/{config.github_user}/{repo}/contents/{quote(clean)}",
        config,
        params={"ref": branch or config.production_branch},
    )
    if not isinstance(data, dict) or data.get("type") != "file":
        raise GitHubAPIError(f"Not a file: {clean}", status_code=400)

    try:
        content = base64.b64decode(data.get("content") or "").decode("utf-8")
    except UnicodeDecodeError as exc:
        raise GitHubAPIError(f"Not a text file: {clean}", status_code=415) from exc
    return RepoFile(path=clean, content=content, sha=data["sha"])


def write_file(
    repo: str,
    path: str,
    content: str,
    sha: str,
    config: Config,
    branch: Optional[str] = None,
    message: Optional[str] = None,
) -> str:
    """
    Update an existing text file; `sha` must be the revision returned by read_file.

    A stale sha is rejected by GitHub with 409. Returns the new blob sha.
    """
    clean = _clean_path(path)
    if not sha:
        raise ValueError("A prior revision sha is required to update a file.")
    payload = {
        "message": message or f"Update {clean}",
        "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        "sha": sha,
        "branch": branch or config.production_branch,
    }
    data = _request(
        "PUT",
        f"/repos/{config.github_user}/{repo}/contents/{quote(clean)}",
        config,
        json=payload,
    )
    return data["content"]["sha"]
