# loader.py
"""
Read a matrix description from disk.

Two formats are understood:

  - Travis-style YAML (`.travis.yml` / `.matrixci.yml`)
  - a Python workflow file defining `MATRIX` or `workflow()`
"""
from __future__ import annotations

import re
import runpy
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from . import conditions
from .errors import ConditionSyntaxError, ConfigError
from .model import Command, DeployConfig, MatrixDescription, MatrixEntry

# `if [[ COND ]]; then CMD; fi` -> Command(run=CMD, when=COND)
_SHELL_GUARD_RE = re.compile(
    r"^\s*if\s+\[\[\s*(?P<cond>.+?)\s*\]\]\s*;\s*then\s+(?P<cmd>.+?)\s*;?\s*fi\s*$",
    re.DOTALL,
)

# Travis variable spellings accepted in `deploy.file`.
_FILE_PLACEHOLDERS = [
    (re.compile(r"\$(?:\{PROJECT_NAME\}|PROJECT_NAME\b)"), "{project}"),
    (re.compile(r"\$(?:\{(?:TRAVIS_TAG|CI_TAG)\}|(?:TRAVIS_TAG|CI_TAG)\b)"), "{tag}"),
    (re.compile(r"\$(?:\{TARGET\}|TARGET\b)"), "{target}"),
]


# ----------------------------------------------------------------------
# Field parsers
# ----------------------------------------------------------------------

def parse_command(value: Any) -> Command:
    if isinstance(value, dict):
        if "run" not in value:
            raise ConfigError(f"command mapping needs a 'run' key: {value!r}")
        when = value.get("if", value.get("when"))
        return Command(run=str(value["run"]), when=str(when) if when is not None else None)

    text = str(value)
    m = _SHELL_GUARD_RE.match(text)
    if m:
        return Command(run=m.group("cmd"), when=m.group("cond"))
    return Command(run=text)


def parse_commands(value: Any) -> List[Command]:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        return [parse_command(value)]
    if isinstance(value, list):
        return [parse_command(v) for v in value]
    raise ConfigError(f"expected a command or list of commands, got {type(value).__name__}")


def parse_env(value: Any) -> Dict[str, str]:
    """Accepts "K=V K2=V2", a list of such strings, or a mapping."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): "" if v is None else str(v) for k, v in value.items()}
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ConfigError(f"invalid env value: {value!r}")

    env: Dict[str, str] = {}
    for item in value:
        if isinstance(item, dict):
            # encrypted `secure:` values cannot be used locally
            if "secure" in item:
                continue
            env.update(parse_env(item))
            continue
        for pair in shlex.split(str(item)):
            key, sep, val = pair.partition("=")
            if not sep or not key:
                raise ConfigError(f"env entry {pair!r} is not KEY=VALUE")
            env[key] = val
    return env


def _file_template(value: Any) -> str:
    if isinstance(value, list):
        if not value:
            raise ConfigError("deploy.file is empty")
        value = value[0]
    template = str(value)
    for pattern, placeholder in _FILE_PLACEHOLDERS:
        template = pattern.sub(placeholder, template)
    return template


def parse_deploy(value: Any) -> Optional[DeployConfig]:
    if value is None:
        return None
    if isinstance(value, list):
        if not value:
            return None
        value = value[0]
    if not isinstance(value, dict):
        raise ConfigError("deploy must be a mapping")

    # YAML 1.1 reads a bare `on:` key as the boolean True
    on = value.get("on", value.get(True)) or {}
    if not isinstance(on, dict):
        raise ConfigError(f"deploy.on must be a mapping, got {on!r}")
    # releases are cut from tags only; `tags: false` asks for something else
    if not on.get("tags", True):
        raise ConfigError("deploy.on.tags: false is not supported, deploys only run on tag builds")
    cfg = DeployConfig(
        provider=str(value.get("provider", "releases")),
        condition=on.get("condition"),
        api_key_env=str(value.get("api_key_env", "GITHUB_TOKEN")),
        repo=value.get("repo"),
        commands=parse_commands(value.get("script")),
    )
    if "file" in value:
        cfg.file = _file_template(value["file"])
    return cfg


def _rows(data: Dict[str, Any]) -> List[Any]:
    for key in ("matrix", "jobs"):
        section = data.get(key)
        if section is None:
            continue
        if isinstance(section, list):
            return section
        if isinstance(section, dict):
            return list(section.get("include") or [])
    raise ConfigError("no matrix rows found (expected matrix.include or jobs.include)")


def parse_entry(row: Any) -> MatrixEntry:
    if not isinstance(row, dict):
        raise ConfigError(f"matrix row must be a mapping, got {row!r}")
    env = parse_env(row.get("env"))
    os_name = row.get("os")
    channel = row.get("channel", row.get("rust"))
    return MatrixEntry(
        os=str(os_name) if os_name is not None else None,
        channel=str(channel) if channel is not None else None,
        target=str(row.get("target") or ""),
        env=env,
        install=parse_commands(row["install"]) if "install" in row else None,
        script=parse_commands(row["script"]) if "script" in row else None,
    )


def parse_description(data: Dict[str, Any]) -> MatrixDescription:
    """Build a MatrixDescription from parsed Travis-style YAML."""
    if not isinstance(data, dict):
        raise ConfigError("matrix file must contain a mapping")

    env_section = data.get("env")
    if isinstance(env_section, dict) and ("global" in env_section or "matrix" in env_section):
        global_env = parse_env(env_section.get("global"))
    else:
        global_env = parse_env(env_section)

    project = global_env.pop("PROJECT_NAME", None) or data.get("project")

    description = MatrixDescription(
        entries=[parse_entry(row) for row in _rows(data)],
        env=global_env,
        before_install=parse_commands(data.get("before_install")),
        install=parse_commands(data.get("install")),
        script=parse_commands(data.get("script")),
        before_deploy=parse_commands(data.get("before_deploy")),
        deploy=parse_deploy(data.get("deploy")),
        project=project,
    )
    validate_conditions(description)
    return description


def validate_conditions(description: MatrixDescription) -> None:
    """Parse every condition up front so syntax errors surface before any job runs."""
    exprs: List[str] = []
    for stage in ("before_install", "install", "script", "before_deploy"):
        exprs.extend(c.when for c in getattr(description, stage) if c.when)
    for entry in description.entries:
        for commands in (entry.install, entry.script):
            exprs.extend(c.when for c in commands or [] if c.when)
    if description.deploy is not None:
        if description.deploy.condition:
            exprs.append(description.deploy.condition)
        exprs.extend(c.when for c in description.deploy.commands if c.when)

    for expr in exprs:
        try:
            conditions.parse(expr)
        except ConditionSyntaxError as e:
            raise ConfigError(f"invalid condition {expr!r}: {e}") from e


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------

def load_yaml(path: Path) -> MatrixDescription:
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"could not parse {path.name}: {e}") from e
    return parse_description(data or {})


def load_python(path: Path) -> MatrixDescription:
    """
    Load a workflow file.

    The file must define either:
      - MATRIX = matrix(...)
      - workflow() -> MatrixDescription
    """
    globals_dict = runpy.run_path(str(path), run_name=f"matrixci_workflow_{path.stem}")

    description = globals_dict.get("MATRIX")
    if description is None and callable(globals_dict.get("workflow")):
        description = globals_dict["workflow"]()

    if not isinstance(description, MatrixDescription):
        raise ConfigError(
            "Workflow must define MATRIX = matrix(...) or workflow() -> MatrixDescription."
        )
    validate_conditions(description)
    return description


def load_matrix(path: str | Path) -> MatrixDescription:
    matrix_path = Path(path).expanduser().resolve()
    if not matrix_path.exists():
        raise FileNotFoundError(f"Matrix file not found: {matrix_path}")

    if matrix_path.suffix == ".py":
        return load_python(matrix_path)
    if matrix_path.suffix in (".yml", ".yaml"):
        return load_yaml(matrix_path)
    raise ConfigError(f"Matrix file must be .yml, .yaml or .py, got: {matrix_path.name}")
