from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError
from .git_facts.git import current_tag, get_remote_url, repo_name_from_url, repo_slug_from_url
from .model import MatrixDescription
from .ui.console import get_console

API_URL = os.environ.get("MATRIXCI_API_URL", "https://api.github.com")
UPLOADS_URL = os.environ.get("MATRIXCI_UPLOADS_URL", "https://uploads.github.com")

# Looked up in this order when --matrix is not given.
MATRIX_FILES = (".matrixci.yml", ".travis.yml", "matrixci_workflow.py")


@dataclass
class RunConfig:
    """Settings for one `matrixci run`, after CLI flags and env are merged."""
    project: str
    tag: Optional[str]
    workers: Optional[int]
    repo: Optional[str]
    api_url: str = API_URL
    uploads_url: str = UPLOADS_URL


def _git_or_none(fn, *args):
    try:
        return fn(*args)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None


def _parse_workers(value: str) -> int:
    try:
        workers = int(value)
    except ValueError:
        raise ConfigError(f"MATRIXCI_WORKERS must be a whole number, got {value!r}")
    if workers < 1:
        raise ConfigError(f"MATRIXCI_WORKERS must be at least 1, got {workers}")
    return workers


def resolve_run_config(
    description: MatrixDescription,
    *,
    project: Optional[str] = None,
    tag: Optional[str] = None,
    workers: Optional[int] = None,
    detect_tag: bool = True,
    cwd: str | Path = ".",
    environ: Optional[Mapping[str, str]] = None,
) -> RunConfig:
    """
    Merge CLI values, environment and git facts.

    Precedence (highest first): explicit arguments, MATRIXCI_* / TRAVIS_TAG
    environment variables, the matrix file, git.
    """
    env = os.environ if environ is None else environ
    console = get_console()

    remote = _git_or_none(get_remote_url, "origin", cwd)

    if not project:
        if env.get("MATRIXCI_PROJECT_NAME"):
            project = env["MATRIXCI_PROJECT_NAME"]
        elif description.project:
            project = description.project
        elif remote:
            project = repo_name_from_url(remote)
            console.print_debug(f"Using project name from git remote: {project}")
        else:
            project = Path(cwd).resolve().name
            console.print_debug(f"Using directory name as project name: {project}")

    tag = tag or env.get("MATRIXCI_TAG") or env.get("TRAVIS_TAG")
    if not tag and detect_tag:
        tag = _git_or_none(current_tag, cwd)
        if tag:
            console.print_debug(f"Using tag at HEAD: {tag}")

    if workers is None and env.get("MATRIXCI_WORKERS"):
        workers = _parse_workers(env["MATRIXCI_WORKERS"])

    repo = None
    if description.deploy is not None and description.deploy.repo:
        repo = description.deploy.repo
    elif remote:
        repo = repo_slug_from_url(remote)
        console.print_debug(f"Using release repository from git remote: {repo}")

    return RunConfig(
        project=project,
        tag=tag or None,
        workers=workers,
        repo=repo,
        api_url=env.get("MATRIXCI_API_URL", API_URL),
        uploads_url=env.get("MATRIXCI_UPLOADS_URL", UPLOADS_URL),
    )
