from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from .config import Config

API_BASE = "https://api.cloudflare.com/client/v4"


class CloudflareAPIError(RuntimeError):
    """Raised when Cloudflare responds with an error."""


def _headers(config: Config) -> Dict[str, str]:
    return {"Authorization": f"Bearer {config.cf_api_token}"}


def _request(method: str, path: str, config: Config, **kwargs: Any) -> Any:
    """
    Generic Cloudflare API helper.

    Returns the `result` field on success and raises CloudflareAPIError on
    HTTP error or when `success` is false.
    """
    url = f"{API_BASE}{path}"
    headers = kwargs.pop("headers", {})
    headers.update(_headers(config))

    resp = requests.request(method, url, headers=headers, timeout=60, **kwargs)
    try:
        data = resp.json()
    except ValueError:
        raise CloudflareAPIError(
            f"Cloudflare API {method} {path} returned non-JSON response: "
            f"{resp.status_code} {resp.text}"
        )

    if not resp.ok or not data.get("success", True):
        raise CloudflareAPIError(
            f"Cloudflare API {method} {path} failed: {resp.status_code} {data}"
        )

    return data.get("result", data)


def _projects_path(config: Config) -> str:
    return f"/accounts/{config.cf_account_id}/pages/projects"


def pages_url(project_name: str) -> str:
    return f"https://{project_name}.pages.dev"


# ---------------------------------------------------------------------------
# Pages projects (one per repository)
# ---------------------------------------------------------------------------


def project_exists(project_name: str, config: Config) -> bool:
    url = f"{API_BASE}{_projects_path(config)}/{project_name}"
    resp = requests.get(url, headers=_headers(config), timeout=60)
    if resp.status_code == 404:
        return False
    if not resp.ok:
        raise CloudflareAPIError(
            f"Cloudflare API GET {url} failed: {resp.status_code} {resp.text}"
        )
    return True


def _ensure_pages_project(
    project_name: str,
    config: Config,
    *,
    repo_owner: Optional[str] = None,
    repo_name: Optional[str] = None,
) -> bool:
    """
    Create the Pages project unless it already exists.

    When a repository is given the project is bound to it, so pushes to the
    production branch build automatically. Returns True if a project was created.
    """
    if project_exists(project_name, config):
        if config.debug:
            print(f"[cloudflare] Pages project already exists: {project_name}")
        return False

    payload: Dict[str, Any] = {
        "name": project_name,
        "production_branch": config.production_branch,
    }
    if repo_owner and repo_name:
        payload["source"] = {
            "type": "github",
            "config": {
                "owner": repo_owner,
                "repo_name": repo_name,
                "production_branch": config.production_branch,
                "pr_comments_enabled": True,
                "deployments_enabled": True,
            },
        }
        # Plain static sites: no build step, publish the repository root.
        payload["build_config"] = {"build_command": "", "destination_dir": ""}

    try:
        _request("POST", _projects_path(config), config, json=payload)
    except CloudflareAPIError as exc:
        # Lost a race with a concurrent create.
        if "already exists" in str(exc).lower():
            return False
        raise
    print(f"[cloudflare] Created Pages project: {project_name}")
    return True


def ensure_pages_project(project_name: str, repo_name: str, config: Config) -> bool:
    return _ensure_pages_project(
        project_name,
        config,
        repo_owner=config.github_user,
        repo_name=repo_name,
    )


# ---------------------------------------------------------------------------
# Deployments
# ---------------------------------------------------------------------------


def trigger_deployment(project_name: str, config: Config, branch: Optional[str] = None) -> Dict[str, Any]:
    """Start a new build of the connected repository branch."""
    target_branch = branch or config.production_branch
    result = _request(
        "POST",
        f"{_projects_path(config)}/{project_name}/deployments",
        config,
        files={"branch": (None, target_branch)},
    )
    if config.debug:
        print(f"[cloudflare] Deployment triggered for {project_name}@{target_branch}: {result.get('id')}")
    return result
