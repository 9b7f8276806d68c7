# expansion.py
from __future__ import annotations

import os
from typing import Dict, List, Mapping, Optional

from .errors import DuplicateEnvKey, MalformedMatrixEntry
from .model import Command, JobSpec, MatrixDescription, MatrixEntry, TagContext

DEFAULT_HOST = "x86_64-unknown-linux-gnu"

# Keys that only make sense on one side of the global/entry split.
ENTRY_ONLY_KEYS = frozenset({"TARGET"})
GLOBAL_ONLY_KEYS = frozenset({"HOST"})

# Set by the runner for every job; user env may not redefine them.
BUILTIN_KEYS = frozenset({
    "CI",
    "CI_OS_NAME",
    "CI_CHANNEL",
    "CI_TAG",
    "PROJECT_NAME",
    "TRAVIS_OS_NAME",
    "TRAVIS_RUST_VERSION",
    "TRAVIS_TAG",
})


def _check_env(index: int, entry: MatrixEntry, global_env: Mapping[str, str]) -> None:
    for key in ENTRY_ONLY_KEYS & set(global_env):
        raise DuplicateEnvKey(key, "must be set per matrix entry, not in the global env")

    for key, value in entry.env.items():
        if key in BUILTIN_KEYS:
            raise DuplicateEnvKey(key, f"entry #{index} sets a variable reserved for the runner")
        if key in GLOBAL_ONLY_KEYS:
            raise DuplicateEnvKey(key, f"entry #{index} overrides a global-only variable")
        if key == "TARGET" and entry.target and value != entry.target:
            raise DuplicateEnvKey(
                key, f"entry #{index} declares target {entry.target!r} but env TARGET={value!r}"
            )
        if key in global_env and global_env[key] != value:
            raise DuplicateEnvKey(
                key, f"entry #{index} sets {value!r}, global env sets {global_env[key]!r}"
            )


def _override(commands: Optional[List[Command]]) -> Optional[tuple]:
    # an empty override list is the same as no override
    return tuple(commands) if commands else None


def expand_matrix(description: MatrixDescription) -> List[JobSpec]:
    """
    Expand the explicitly enumerated matrix rows into JobSpecs.

    One JobSpec per entry, in declaration order. Pure: the description is
    not modified and repeated calls return equal sequences.

    Raises:
        MalformedMatrixEntry: an entry has no os or no channel
        DuplicateEnvKey: entry and global env disagree on a key
    """
    for key in BUILTIN_KEYS & set(description.env):
        raise DuplicateEnvKey(key, "global env sets a variable reserved for the runner")

    jobs: List[JobSpec] = []
    for index, entry in enumerate(description.entries):
        if not entry.os:
            raise MalformedMatrixEntry(index, "os")
        if not entry.channel:
            raise MalformedMatrixEntry(index, "channel")

        _check_env(index, entry, description.env)

        target = entry.target or entry.env.get("TARGET", "")
        env = {k: v for k, v in entry.env.items() if k != "TARGET"}

        jobs.append(
            JobSpec(
                index=index,
                os=str(entry.os),
                channel=str(entry.channel),
                target=target,
                env=tuple(sorted(env.items())),
                install=_override(entry.install),
                script=_override(entry.script),
            )
        )

    return jobs


def job_environment(
    job: JobSpec,
    description: MatrixDescription,
    tag_context: TagContext,
    *,
    project: str,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Build the private environment a job runs with.

    Layers, lowest first: the base (process) environment, HOST default,
    global env, job env, then runner builtins. A fresh dict is returned on
    every call so jobs never share one.
    """
    env: Dict[str, str] = dict(os.environ if base is None else base)
    env["HOST"] = DEFAULT_HOST
    env.update(description.env)
    env.update(dict(job.env))

    env.update({
        "CI": "true",
        "CI_OS_NAME": job.os,
        "CI_CHANNEL": job.channel,
        "TARGET": job.target,
        "PROJECT_NAME": project,
        "TRAVIS_OS_NAME": job.os,
        "TRAVIS_RUST_VERSION": job.channel,
    })

    if tag_context.tag_triggered and tag_context.tag:
        env["CI_TAG"] = tag_context.tag
        env["TRAVIS_TAG"] = tag_context.tag
    else:
        env.pop("CI_TAG", None)
        env.pop("TRAVIS_TAG", None)

    return env
