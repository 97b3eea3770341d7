import re
import shutil
import uuid
from pathlib import Path
from typing import Any, Optional

import requests
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import cloudflare_api, github_api
from .cloudflare_api import CloudflareAPIError
from .config import Config
from .deployer import DeployError, InputError, deploy_archive
from .github_api import GitHubAPIError
from .inference import InferenceError, complete_text

_REPO_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
# GitHub statuses that describe the caller's request rather than a server fault.
_PASSTHROUGH_STATUSES = {400, 404, 409, 415, 422}


class _FileUpdate(BaseModel):
    content: str
    sha: str
    message: Optional[str] = None


class _CompletionRequest(BaseModel):
    prompt: str
    system: Optional[str] = None


def _error(status: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": message, **extra})


def _validation_message(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        # loc looks like ("body", "sha"); the "body" prefix says nothing useful.
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = str(error.get("msg", "invalid"))
        problems.append(f"{location}: {message}" if location else message)
    return "Invalid request: " + "; ".join(problems)


def _github_error(exc: GitHubAPIError) -> JSONResponse:
    status = exc.status_code if exc.status_code in _PASSTHROUGH_STATUSES else 500
    return _error(status, str(exc))


def _remove_upload(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        print(f"[server] Could not remove upload {path}: {exc}")


def create_app(config: Config) -> FastAPI:
    """Build the HTTP surface around an explicit configuration."""
    app = FastAPI(title="zip-pages", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(422, _validation_message(exc))

    def _managed_repo(repo: str) -> bool:
        return bool(_REPO_PATTERN.fullmatch(repo)) and repo.startswith(config.repo_prefix)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/deploy")
    def deploy(
        file: Optional[UploadFile] = File(None),
        project_name: Optional[str] = Form(None, alias="projectName"),
        submitter: Optional[str] = Form(None),
    ) -> JSONResponse:
        if file is None or not file.filename:
            return _error(400, "An archive upload is required.")
        if not project_name or not project_name.strip():
            return _error(400, "A project name is required.")
        if not file.filename.lower().endswith(".zip"):
            return _error(400, "Upload a .zip archive of the site.")

        config.upload_dir.mkdir(parents=True, exist_ok=True)
        upload_path = config.upload_dir / f"{uuid.uuid4().hex}.zip"
        try:
            with upload_path.open("wb") as out:
                shutil.copyfileobj(file.file, out)
            result = deploy_archive(upload_path, project_name, config, submitter=submitter)
        except InputError as exc:
            return _error(400, str(exc))
        except DeployError as exc:
            return _error(500, str(exc), stages=[stage.as_dict() for stage in exc.stages])
        except Exception as exc:  # noqa: BLE001
            print(f"[server] Deploy of {project_name!r} failed: {exc}")
            return _error(500, str(exc))
        finally:
            _remove_upload(upload_path)
        return JSONResponse(content=result.as_dict())

    @app.get("/api/repos/{repo}/files")
    def list_repo_files(repo: str) -> JSONResponse:
        if not _managed_repo(repo):
            return _error(404, f"Unknown repository: {repo}")
        try:
            files = github_api.list_files(repo, config)
        except GitHubAPIError as exc:
            return _github_error(exc)
        return JSONResponse(content={"success": True, "files": files})

    @app.get("/api/repos/{repo}/files/{path:path}")
    def read_repo_file(repo: str, path: str) -> JSONResponse:
        if not _managed_repo(repo):
            return _error(404, f"Unknown repository: {repo}")
        try:
            repo_file = github_api.read_file(repo, path, config)
        except ValueError as exc:
            return _error(400, str(exc))
        except GitHubAPIError as exc:
            return _github_error(exc)
        return JSONResponse(
            content={"success": True, "path": repo_file.path, "content": repo_file.content, "sha": repo_file.sha}
        )

    @app.put("/api/repos/{repo}/files/{path:path}")
    def write_repo_file(repo: str, path: str, update: _FileUpdate) -> JSONResponse:
        if not _managed_repo(repo):
            return _error(404, f"Unknown repository: {repo}")
        try:
            new_sha = github_api.write_file(repo, path, update.content, update.sha, config, message=update.message)
        except ValueError as exc:
            return _error(400, str(exc))
        except GitHubAPIError as exc:
            return _github_error(exc)

        build = "triggered"
        try:
            cloudflare_api.trigger_deployment(repo, config)
        except (CloudflareAPIError, requests.RequestException) as exc:
            # Pages also rebuilds on push; an explicit trigger is best-effort.
            print(f"[server] Rebuild trigger for {repo} failed: {exc}")
            build = "skipped"
        return JSONResponse(content={"success": True, "sha": new_sha, "build": build})

    @app.post("/api/ai")
    def ai_completion(request: _CompletionRequest) -> JSONResponse:
        if not config.gemini_api_key:
            return _error(503, "Text completion is not configured.")
        try:
            text = complete_text(request.prompt, config, system=request.system)
        except ValueError as exc:
            return _error(400, str(exc))
        except (InferenceError, requests.RequestException) as exc:
            return _error(500, str(exc))
        return JSONResponse(content={"success": True, "text": text})

    return app
