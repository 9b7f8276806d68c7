# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["describe", "--tags"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def current_tag(cwd: Optional[str | Path] = None) -> str:
    """
    Return the tag pointing exactly at HEAD.

    This is how a release run is recognised locally: if HEAD carries a tag,
    the run is treated as tag-triggered.

    Raises:
        subprocess.CalledProcessError: HEAD is not tagged
    """
    return _git(["describe", "--exact-match", "--tags", "HEAD"], cwd)


def get_remote_url(name: str = "origin", cwd: Optional[str | Path] = None) -> str:
    """URL of the given remote."""
    return _git(["remote", "get-url", name], cwd)


# git@github.com:owner/name.git, https://github.com/owner/name(.git)
_SLUG_RE = re.compile(r"[:/](?P<owner>[^/:]+)/(?P<name>[^/]+?)(?:\.git)?/?$")


def repo_slug_from_url(url: str) -> Optional[str]:
    """"owner/name" for a remote URL, or None if it does not look like one."""
    m = _SLUG_RE.search(url.strip())
    if not m:
        return None
    return f"{m.group('owner')}/{m.group('name')}"


def repo_name_from_url(url: str) -> str:
    return url.strip().rstrip("/").split("/")[-1].split(":")[-1].replace(".git", "")
