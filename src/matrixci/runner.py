# runner.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Tuple

from . import conditions
from .deploy import DeployGate, ReleaseClient
from .errors import ConditionSyntaxError, MissingTagContext, ReleaseError, StageFailed, UnboundVariable
from .expansion import job_environment
from .model import (
    MANDATORY_STAGES,
    Command,
    DeployConfig,
    JobResult,
    JobSpec,
    MatrixDescription,
    RunReport,
    StageResult,
    TagContext,
)
from .ui.console import get_console

# Captured output kept per command; older output is dropped.
OUTPUT_TAIL = 4000

# Exit code recorded for a command that was killed by cancel().
CANCELLED_EXIT = -int(signal.SIGTERM)


class SubprocessRunner(Protocol):
    def run(
        self,
        command: str,
        env: Mapping[str, str],
        cwd: Path,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[int, str]: ...


class ShellRunner:
    """
    Runs one command through the shell and captures its combined output.

    Each command gets its own process group so cancel() can take down
    anything the command spawned.
    """

    def __init__(self, poll_interval: float = 0.2, kill_grace_period: float = 5.0):
        self.poll_interval = poll_interval
        self.kill_grace_period = kill_grace_period

    def _terminate(self, proc: subprocess.Popen) -> None:
        if hasattr(os, "killpg"):
            try:
                os.killpg(proc.pid, signal.SIGTERM)
            except ProcessLookupError:
                return
        else:
            proc.terminate()
        try:
            proc.wait(timeout=self.kill_grace_period)
        except subprocess.TimeoutExpired:
            proc.kill()

    def run(
        self,
        command: str,
        env: Mapping[str, str],
        cwd: Path,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[int, str]:
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=str(cwd),
            env=dict(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            start_new_session=True,
        )

        while True:
            try:
                out, _ = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    self._terminate(proc)
                    out, _ = proc.communicate()
                    return CANCELLED_EXIT, (out or "")[-OUTPUT_TAIL:]

        return proc.returncode, (out or "")[-OUTPUT_TAIL:]


class StageRunner:
    """
    Runs the fixed stage sequence for matrix jobs.

    One StageRunner serves a whole run; every call to run() builds its own
    environment, so jobs share nothing but read-only configuration.
    """

    def __init__(
        self,
        description: MatrixDescription,
        tag_context: TagContext,
        *,
        project: str,
        runner: SubprocessRunner | None = None,
        release_client: ReleaseClient | None = None,
        cwd: str | Path = ".",
        base_env: Optional[Mapping[str, str]] = None,
    ):
        self.description = description
        self.tag_context = tag_context
        self.project = project
        self.runner = runner or ShellRunner()
        self.release_client = release_client
        self.cwd = Path(cwd).resolve()
        self.base_env = dict(os.environ if base_env is None else base_env)

        deploy = description.deploy
        self.gate = (
            DeployGate(project, file_template=deploy.file, condition=deploy.condition)
            if deploy is not None
            else None
        )

        self._cancel: Dict[int, threading.Event] = {}
        self._cancel_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def _cancel_event(self, job: JobSpec) -> threading.Event:
        with self._cancel_lock:
            return self._cancel.setdefault(job.index, threading.Event())

    def cancel(self, job: JobSpec) -> None:
        """Stop `job`: kill its running command and skip its remaining stages."""
        self._cancel_event(job).set()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def commands_for(self, job: JobSpec, stage: str) -> List[Command]:
        override = job.override(stage)
        if override:
            return list(override)
        return self.description.global_commands(stage)

    def environment(self, job: JobSpec) -> Dict[str, str]:
        return job_environment(
            job,
            self.description,
            self.tag_context,
            project=self.project,
            base=self.base_env,
        )

    def _run_stage(
        self,
        job: JobSpec,
        stage: str,
        commands: List[Command],
        env: Mapping[str, str],
        cancel: threading.Event,
    ) -> StageResult:
        console = get_console()
        console.print_stage(job.name, stage)

        outputs: List[str] = []
        ran = 0
        for command in commands:
            if cancel.is_set():
                return StageResult(stage, CANCELLED_EXIT, "\n".join(outputs))

            if command.when:
                try:
                    allowed = conditions.evaluate(command.when, env)
                except (UnboundVariable, ConditionSyntaxError) as e:
                    console.print_command_skipped(job.name, command.run, str(e))
                    outputs.append(f"skipped {command.run!r}: {e}")
                    continue
                if not allowed:
                    console.print_command_skipped(job.name, command.run, f"{command.when} is false")
                    continue

            console.print_command(job.name, command.run)
            exit_code, output = self.runner.run(command.run, env, self.cwd, cancel)
            ran += 1
            if output:
                outputs.append(output)
            if exit_code != 0:
                result = StageResult(stage, exit_code, "\n".join(outputs))
                if not cancel.is_set():
                    console.print_stage_failed(job.name, stage, exit_code, result.output)
                return result

        return StageResult(stage, 0, "\n".join(outputs), skipped=ran == 0)

    def _run_deploy(
        self,
        job: JobSpec,
        deploy: DeployConfig,
        env: Mapping[str, str],
        file_glob: str,
        cancel: threading.Event,
    ) -> StageResult:
        outputs: List[str] = []
        commands = self.commands_for(job, "deploy")
        if commands:
            result = self._run_stage(job, "deploy", commands, env, cancel)
            if not result.ok:
                return result
            if result.output:
                outputs.append(result.output)

        if deploy.provider != "releases":
            outputs.append(f"provider {deploy.provider!r}: commands only")
            return StageResult("deploy", 0, "\n".join(outputs))

        if self.release_client is None:
            outputs.append("no release client configured")
            return StageResult("deploy", 1, "\n".join(outputs))

        api_key = env.get(deploy.api_key_env, "")
        try:
            upload = self.release_client.upload(api_key, file_glob, self.tag_context.tag or "", job.target)
        except ReleaseError as e:
            get_console().print_stage_failed(job.name, "deploy", 1, str(e))
            outputs.append(str(e))
            return StageResult("deploy", 1, "\n".join(outputs))

        if not upload.ok:
            outputs.append(f"nothing uploaded for {file_glob}")
            return StageResult("deploy", 1, "\n".join(outputs))

        outputs.append("uploaded: " + ", ".join(upload.uploaded))
        return StageResult("deploy", 0, "\n".join(outputs))

    # ------------------------------------------------------------------
    # Job
    # ------------------------------------------------------------------

    def run(self, job: JobSpec) -> JobResult:
        """
        Run every stage of `job` in order.

        A non-zero exit in before_install, install or script stops the job
        and marks it failed. before_deploy and deploy only run when the
        deploy gate fires; their failures are recorded on the result but do
        not fail the job.
        """
        console = get_console()
        cancel = self._cancel_event(job)
        env = self.environment(job)
        result = JobResult(job=job, status="ok")

        console.print_job_start(job.name)

        for stage in MANDATORY_STAGES:
            commands = self.commands_for(job, stage)
            if not commands:
                continue
            stage_result = self._run_stage(job, stage, commands, env, cancel)
            result.stages.append(stage_result)
            if cancel.is_set():
                result.status = "cancelled"
                console.print_job_finished(job.name, result.status)
                return result
            if not stage_result.ok:
                result.status = "failed"
                result.error = StageFailed(stage, stage_result.exit_code)
                console.print_job_finished(job.name, result.status)
                return result

        deploy = self.description.deploy
        if deploy is not None:
            decision = self.gate.decide(self.tag_context, job, result.stages, env)
            result.deploy = decision
            console.print_deploy_decision(job.name, decision.fire, decision.reason)

            if decision.fire:
                commands = self.commands_for(job, "before_deploy")
                before = None
                if commands:
                    before = self._run_stage(job, "before_deploy", commands, env, cancel)
                    result.stages.append(before)
                if before is None or before.ok:
                    result.stages.append(self._run_deploy(job, deploy, env, decision.file_glob, cancel))
                if cancel.is_set():
                    result.status = "cancelled"

        console.print_job_finished(job.name, result.status)
        return result


def run_matrix(
    jobs: List[JobSpec],
    stage_runner: StageRunner,
    *,
    max_workers: int | None = None,
) -> RunReport:
    """
    Run all jobs concurrently and collect a report ordered like `jobs`.

    Jobs are independent: a failing job never stops its siblings.
    """
    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    results: Dict[int, JobResult] = {}

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {pool.submit(stage_runner.run, job): job for job in jobs}
        try:
            for future in as_completed(futures):
                job = futures[future]
                try:
                    results[job.index] = future.result()
                except MissingTagContext:
                    raise
                except Exception as e:
                    # one broken job is reported as failed; its siblings keep running
                    get_console().print_error(f"Job {job.name} crashed", str(e))
                    results[job.index] = JobResult(job=job, status="failed")
        except KeyboardInterrupt:
            for future in futures:
                future.cancel()
            for job in jobs:
                stage_runner.cancel(job)
            raise

    return RunReport([results[job.index] for job in jobs])
