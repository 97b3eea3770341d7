from __future__ import annotations
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, overload
from dotenv import load_dotenv

from .site_paths import ENTRY_POLICIES

load_dotenv()


@dataclass
class Config:
    github_user: str
    github_token: str
    cf_account_id: str
    cf_api_token: str
    repo_prefix: str = "site-"
    production_branch: str = "main"
    work_dir: Path = Path(tempfile.gettempdir()) / "zip-pages"
    entry_document: str = "index.html"
    entry_policy: str = "search"
    git_author_name: str = "ZipPages Bot"
    git_author_email: str = "bot@zip-pages.local"
    commit_message: str = "Auto deploy from zip-pages"
    gemini_api_key: str | None = None
    gemini_text_model: str = "gemini-2.5-flash"
    poll_attempts: int = 5
    poll_initial_delay: float = 1.0
    debug: bool = False

    @property
    def upload_dir(self) -> Path:
        return self.work_dir / "uploads"

    @property
    def extract_dir(self) -> Path:
        return self.work_dir / "trees"

    @classmethod
    def load(cls) -> "Config":
        @overload
        def _get(name: str, *, required: Literal[True] = True, default: None = None) -> str:
            ...

        @overload
        def _get(name: str, *, required: Literal[False], default: str) -> str:
            ...

        @overload
        def _get(name: str, *, required: Literal[False], default: None = None) -> str | None:
            ...

        def _get(name: str, *, required: bool = True, default: str | None = None) -> str | None:
            value = os.getenv(name)
            if value is None:
                value = default
            if required and not value:
                raise RuntimeError(f"Missing required environment variable: {name}")
            return value

        attempts_str = _get("POLL_ATTEMPTS", required=False, default="5")
        try:
            poll_attempts = int(attempts_str)
        except ValueError:
            raise RuntimeError("Invalid POLL_ATTEMPTS; must be an integer (e.g. 5)")
        if poll_attempts < 1:
            raise RuntimeError("Invalid POLL_ATTEMPTS; must be at least 1")

        delay_str = _get("POLL_INITIAL_DELAY", required=False, default="1.0")
        try:
            poll_initial_delay = float(delay_str)
        except ValueError:
            raise RuntimeError("Invalid POLL_INITIAL_DELAY; must be a number of seconds (e.g. 1.5)")

        entry_policy = _get("ENTRY_POLICY", required=False, default="search").strip().lower()
        if entry_policy not in ENTRY_POLICIES:
            raise RuntimeError(f"Invalid ENTRY_POLICY; must be one of: {', '.join(ENTRY_POLICIES)}")

        work_dir_str = _get("WORK_DIR", required=False, default=None)
        work_dir = Path(work_dir_str) if work_dir_str else Path(tempfile.gettempdir()) / "zip-pages"

        debug_str = _get("ZIP_PAGES_DEBUG", required=False, default="")

        return cls(
            github_user=_get("GITHUB_USER"),
            github_token=_get("GITHUB_TOKEN"),
            cf_account_id=_get("CLOUDFLARE_ACCOUNT_ID"),
            cf_api_token=_get("CLOUDFLARE_API_TOKEN"),
            repo_prefix=_get("REPO_PREFIX", required=False, default="site-"),
            production_branch=_get("PRODUCTION_BRANCH", required=False, default="main"),
            work_dir=work_dir,
            entry_document=_get("ENTRY_DOCUMENT", required=False, default="index.html"),
            entry_policy=entry_policy,
            git_author_name=_get("GIT_AUTHOR_NAME", required=False, default="ZipPages Bot"),
            git_author_email=_get("GIT_AUTHOR_EMAIL", required=False, default="bot@zip-pages.local"),
            commit_message=_get("COMMIT_MESSAGE", required=False, default="Auto deploy from zip-pages"),
            gemini_api_key=_get("GEMINI_API_KEY", required=False, default=None),
            gemini_text_model=_get("GEMINI_TEXT_MODEL", required=False, default="gemini-2.5-flash"),
            poll_attempts=poll_attempts,
            poll_initial_delay=poll_initial_delay,
            debug=debug_str.strip().lower() in {"1", "true", "yes", "on"},
        )
