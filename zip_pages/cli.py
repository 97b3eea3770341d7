from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
import uvicorn

from .config import Config
from .deployer import DeployError, InputError, deploy_archive
from .server import create_app
from .site_paths import ENTRY_POLICIES, EntryDocumentMissing, collapse_wrapper, hoist_site_root, remove_trash

app = typer.Typer(help="zip-pages - publish zipped static sites to GitHub and Cloudflare Pages")


@app.command()
def init() -> None:
    """Check that the environment holds a usable configuration."""
    typer.echo("Initializing zip-pages...")
    try:
        config = Config.load()
    except RuntimeError as e:
        typer.echo(f"Config error: {e}")
        typer.echo("Create a .env file based on .env.example and try again.")
        raise typer.Exit(code=1)
    typer.echo("Config loaded from environment.")
    typer.echo(f"Repositories: github.com/{config.github_user}/{config.repo_prefix}<name>")
    typer.echo(f"Working directory: {config.work_dir}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
) -> None:
    """Run the upload and file-edit HTTP API."""
    config = Config.load()
    uvicorn.run(create_app(config), host=host, port=port)


@app.command()
def deploy(
    archive: Path = typer.Argument(..., help="Zip archive of the site", exists=True, dir_okay=False),
    name: str = typer.Option(..., "--name", "-n", help="Project display name"),
    submitter: Optional[str] = typer.Option(None, "--submitter", help="Name recorded as the commit author"),
) -> None:
    """Publish a local archive the same way the /deploy endpoint does."""
    config = Config.load()
    try:
        result = deploy_archive(archive, name, config, submitter=submitter)
    except InputError as exc:
        typer.echo(f"Invalid upload: {exc}")
        raise typer.Exit(code=2)
    except DeployError as exc:
        typer.echo(f"Deploy failed: {exc}")
        raise typer.Exit(code=1)

    for stage in result.stages:
        line = f"- {stage.name}: {stage.status}"
        if stage.detail:
            line += f" ({stage.detail})"
        typer.echo(line)
    typer.echo(f"Repository: {result.repo_url}")
    typer.echo(f"Live URL: {result.url}")


@app.command()
def normalize(
    directory: Path = typer.Argument(..., help="Extracted site directory to repair in place", exists=True, file_okay=False),
    entry: str = typer.Option("index.html", "--entry", help="Entry document that marks the site root"),
    policy: str = typer.Option("search", "--policy", help=f"Entry lookup policy: {', '.join(ENTRY_POLICIES)}"),
) -> None:
    """Apply the archive normalizer to a local directory."""
    if policy not in ENTRY_POLICIES:
        typer.echo(f"Unknown policy {policy!r}; choose one of: {', '.join(ENTRY_POLICIES)}")
        raise typer.Exit(code=2)

    # Same steps as normalize_tree, run one at a time so removals can be reported.
    for path in remove_trash(directory):
        typer.echo(f"Removed {path.relative_to(directory)}")
    collapse_wrapper(directory)
    try:
        hoist_site_root(directory, entry_document=entry, policy=policy)
    except EntryDocumentMissing as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1)

    typer.echo("Normalized tree:")
    for path in sorted(p.relative_to(directory).as_posix() for p in directory.iterdir()):
        typer.echo(f"- {path}")


if __name__ == "__main__":
    app()
