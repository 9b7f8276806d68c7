# src/matrixci/dsl.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Union

from .model import Command, DeployConfig, MatrixDescription, MatrixEntry

CommandLike = Union[str, Command]


# ---------------------------------------------------------------------
# Command helper
# ---------------------------------------------------------------------

def cmd(run: str, *, when: str | None = None) -> Command:
    """Create a shell command, optionally gated by a condition."""
    return Command(run=run, when=when)


def _commands(value: Optional[Iterable[CommandLike]]) -> Optional[List[Command]]:
    if value is None:
        return None
    if isinstance(value, (str, Command)):
        value = [value]
    return [c if isinstance(c, Command) else Command(run=c) for c in value]


# ---------------------------------------------------------------------
# Matrix rows
# ---------------------------------------------------------------------

def entry(
    os: str,
    channel: str,
    target: str = "",
    *,
    env: Optional[Dict[str, str]] = None,
    install: Optional[Iterable[CommandLike]] = None,
    script: Optional[Iterable[CommandLike]] = None,
) -> MatrixEntry:
    return MatrixEntry(
        os=os,
        channel=channel,
        target=target,
        # force values to str, they end up in a process environment
        env={k: str(v) for k, v in (env or {}).items()},
        install=_commands(install),
        script=_commands(script),
    )


def deploy(
    *,
    file: str = "{project}-{tag}-{target}.*",
    condition: str | None = None,
    provider: str = "releases",
    api_key_env: str = "GITHUB_TOKEN",
    repo: str | None = None,
    script: Optional[Iterable[CommandLike]] = None,
) -> DeployConfig:
    return DeployConfig(
        provider=provider,
        file=file,
        condition=condition,
        api_key_env=api_key_env,
        repo=repo,
        commands=_commands(script) or [],
    )


# ---------------------------------------------------------------------
# Whole description
# ---------------------------------------------------------------------

def matrix(
    *entries: MatrixEntry,
    env: Optional[Dict[str, str]] = None,
    before_install: Optional[Iterable[CommandLike]] = None,
    install: Optional[Iterable[CommandLike]] = None,
    script: Optional[Iterable[CommandLike]] = None,
    before_deploy: Optional[Iterable[CommandLike]] = None,
    deploy: DeployConfig | None = None,
    project: str | None = None,
) -> MatrixDescription:
    """
    Build a matrix description.

    Example:
        MATRIX = matrix(
            entry("linux", "stable", "x86_64-unknown-linux-gnu"),
            entry("osx", "stable", "x86_64-apple-darwin"),
            install=[cmd("rustup target add $TARGET", when="$HOST != $TARGET")],
            script="cargo test --target $TARGET",
        )
    """
    if not entries:
        raise ValueError("matrix() needs at least one entry")

    return MatrixDescription(
        entries=list(entries),
        env={k: str(v) for k, v in (env or {}).items()},
        before_install=_commands(before_install) or [],
        install=_commands(install) or [],
        script=_commands(script) or [],
        before_deploy=_commands(before_deploy) or [],
        deploy=deploy,
        project=project,
    )
