# cli.py
from __future__ import annotations

import os
import sys
from pathlib import Path

import click

from matrixci import conditions
from matrixci.config import MATRIX_FILES, resolve_run_config
from matrixci.deploy import GitHubReleasesClient
from matrixci.errors import MatrixCIError
from matrixci.loader import load_matrix, parse_env
from matrixci.expansion import expand_matrix
from matrixci.model import TagContext
from matrixci.runner import StageRunner, run_matrix
from matrixci.ui.console import Console, get_console, set_console


def find_matrix_files() -> list[Path]:
    """
    Find all matrix files in the current directory.

    Returns:
        List of Path objects for matrix files
    """
    current_dir = Path(".")
    return [current_dir / name for name in MATRIX_FILES if (current_dir / name).exists()]


def discover_matrix(matrix_arg: str | None) -> Path:
    """
    Discover matrix file from argument or default.

    Raises:
        SystemExit: If no matrix file can be found or several exist
    """
    console = get_console()

    if matrix_arg:
        matrix_path = Path(matrix_arg)
        if not matrix_path.exists():
            console.print_error(
                "Matrix file not found",
                f"Could not find matrix file: {matrix_arg}",
                suggestion="Create a matrix file or specify a different path:\n  matrixci run --matrix .travis.yml",
            )
            sys.exit(1)
        return matrix_path

    matrix_files = find_matrix_files()

    if len(matrix_files) == 0:
        console.print_error(
            "No matrix file found",
            "Could not find any matrix files.",
            details=["Looked for:"] + [f"  {name}" for name in MATRIX_FILES],
            suggestion="Specify a matrix file explicitly:\n  matrixci run --matrix my_matrix.yml",
        )
        sys.exit(1)

    if len(matrix_files) > 1:
        file_list = "\n".join(f"  {f}" for f in matrix_files)
        console.print_error(
            "Multiple matrix files found",
            "Found multiple matrix files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a matrix explicitly:\n  matrixci run --matrix .travis.yml",
        )
        sys.exit(1)

    return matrix_files[0]


def _load_jobs(matrix_path: Path):
    console = get_console()
    try:
        description = load_matrix(matrix_path)
        jobs = expand_matrix(description)
    except MatrixCIError as e:
        console.print_error("Invalid matrix", f"Could not load {matrix_path}", details=[str(e)])
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    return description, jobs


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full command output)",
)
def cli(debug):
    """matrixci: run a build matrix locally, Travis style."""
    console = Console(debug=debug)
    set_console(console)


@cli.command()
@click.option("--matrix", "matrix_file", default=None, help="Matrix file (.yml or .py)")
@click.option("--tag", default=None, help="Treat this run as triggered by TAG")
@click.option("--no-tag-detect", is_flag=True, default=False, help="Do not read the tag from git")
@click.option("--project", default=None, help="Project name used in artifact names")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Number of parallel jobs")
@click.option("--only", default=None, help="Only run jobs whose name contains this text")
def run(matrix_file, tag, no_tag_detect, project, workers, only):
    """Run every job of the build matrix."""
    console = get_console()
    matrix_path = discover_matrix(matrix_file)
    description, jobs = _load_jobs(matrix_path)

    if only:
        jobs = [j for j in jobs if only in j.name]
        if not jobs:
            console.print_error("No jobs selected", f"No job name contains {only!r}")
            sys.exit(1)

    try:
        cfg = resolve_run_config(
            description,
            project=project,
            tag=tag,
            workers=workers,
            detect_tag=not no_tag_detect,
        )
        tag_context = TagContext.from_tag(cfg.tag)
        console.print_debug(f"Using {cfg.workers or 'default'} worker(s)")

        release_client = None
        if cfg.repo:
            release_client = GitHubReleasesClient(
                cfg.repo,
                api_url=cfg.api_url,
                uploads_url=cfg.uploads_url,
            )

        console.print_run_started(
            project=cfg.project,
            matrix=matrix_path.name,
            job_count=len(jobs),
            tag=cfg.tag,
        )

        stage_runner = StageRunner(
            description,
            tag_context,
            project=cfg.project,
            release_client=release_client,
        )
        report = run_matrix(jobs, stage_runner, max_workers=cfg.workers)

        console.print_results(report.results)
        sys.exit(report.exit_code)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except MatrixCIError as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--matrix", "matrix_file", default=None, help="Matrix file (.yml or .py)")
def plan(matrix_file):
    """Show the jobs the matrix expands to, without running them."""
    console = get_console()
    matrix_path = discover_matrix(matrix_file)
    _description, jobs = _load_jobs(matrix_path)

    console.print_header(f"{len(jobs)} job(s) from {matrix_path.name}")
    for job in jobs:
        overrides = [stage for stage in ("install", "script") if job.override(stage)]
        detail = f"overrides: {', '.join(overrides)}" if overrides else "global stages"
        console.print_plan_job(job.name, detail)


@cli.command()
@click.argument("expression")
@click.option("-e", "--env", "env_pairs", multiple=True, help="KEY=VALUE to evaluate against")
def check(expression, env_pairs):
    """
    Evaluate a condition EXPRESSION against the current environment plus
    any -e pairs (exit 0 if true, 1 if false, 2 on error).
    """
    console = get_console()
    try:
        env = dict(os.environ)
        env.update(parse_env(list(env_pairs)))
        value = conditions.evaluate(expression, env)
    except MatrixCIError as e:
        console.print_error("Condition error", str(e))
        sys.exit(2)

    console.print_info("true" if value else "false")
    sys.exit(0 if value else 1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
