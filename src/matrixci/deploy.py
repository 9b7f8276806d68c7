# deploy.py
from __future__ import annotations

import glob
import json
import mimetypes
import re
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Protocol
from urllib.parse import quote, urljoin

from . import conditions
from .errors import ConditionSyntaxError, MissingTagContext, ReleaseError, UnboundVariable
from .model import MANDATORY_STAGES, DeployDecision, JobSpec, StageResult, TagContext

DEFAULT_FILE_TEMPLATE = "{project}-{tag}-{target}.*"

# only these placeholders are filled in; any other brace is part of the glob
_TEMPLATE_FIELD_RE = re.compile(r"\{(project|tag|target)\}")

# innermost `{a,b}` group of a glob
_BRACE_RE = re.compile(r"\{([^{}]*,[^{}]*)\}")


def expand_braces(pattern: str) -> List[str]:
    """
    Expand shell-style `{a,b}` alternatives, which `glob` does not support.

    "x.{tar.gz,zip}" -> ["x.tar.gz", "x.zip"]
    """
    m = _BRACE_RE.search(pattern)
    if not m:
        return [pattern]
    expanded: List[str] = []
    for choice in m.group(1).split(","):
        expanded.extend(expand_braces(pattern[:m.start()] + choice + pattern[m.end():]))
    return expanded


class DeployGate:
    """
    Decides whether a job's deploy stage fires.

    Policy: the run must be tag-triggered, the job must be on the stable
    channel with a non-empty target, and every mandatory stage must have
    passed. An optional extra condition (the `on.condition` of the deploy
    block) must also hold.
    """

    def __init__(
        self,
        project: str,
        *,
        file_template: str = DEFAULT_FILE_TEMPLATE,
        condition: str | None = None,
    ):
        self.project = project
        self.file_template = file_template
        self.condition = condition

    def artifact_glob(self, tag: str, target: str) -> str:
        values = {"project": self.project, "tag": tag, "target": target}
        return _TEMPLATE_FIELD_RE.sub(lambda m: values[m.group(1)], self.file_template)

    def decide(
        self,
        tag_context: TagContext | None,
        job: JobSpec,
        stages: Iterable[StageResult] = (),
        env: Optional[Mapping[str, str]] = None,
    ) -> DeployDecision:
        if tag_context is None:
            raise MissingTagContext("deploy gate evaluated without a tag context")

        if not tag_context.tag_triggered:
            return DeployDecision(False, "not a tag build")
        if not tag_context.tag:
            raise MissingTagContext("tag-triggered run has no tag name")

        for s in stages:
            if s.stage in MANDATORY_STAGES and not s.ok:
                return DeployDecision(False, f"stage '{s.stage}' failed")

        if job.channel != "stable":
            return DeployDecision(False, f"channel is {job.channel!r}, not 'stable'")
        if not job.target:
            return DeployDecision(False, "no target")

        if self.condition:
            try:
                if not conditions.evaluate(self.condition, env or {}):
                    return DeployDecision(False, f"condition not met: {self.condition}")
            except (UnboundVariable, ConditionSyntaxError) as e:
                return DeployDecision(False, f"condition error: {e}")

        return DeployDecision(
            True,
            f"tag {tag_context.tag} on stable",
            file_glob=self.artifact_glob(tag_context.tag, job.target),
        )


# ----------------------------------------------------------------------
# Release upload
# ----------------------------------------------------------------------

@dataclass
class UploadResult:
    tag: str
    target: str
    uploaded: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.uploaded)


class ReleaseClient(Protocol):
    def upload(self, api_key: str, file_glob: str, tag: str, target: str) -> UploadResult: ...


class GitHubReleasesClient:
    """Uploads build artifacts to a GitHub release."""

    def __init__(
        self,
        repo: str,
        *,
        api_url: str = "https://api.github.com",
        uploads_url: str = "https://uploads.github.com",
        root: str | Path = ".",
    ):
        """
        Args:
            repo: "owner/name" of the repository holding the release
            api_url: Base URL of the REST API
            uploads_url: Base URL for asset uploads
            root: Directory the artifact glob is resolved against
        """
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self.uploads_url = uploads_url.rstrip("/")
        self.root = Path(root)

    def _request(
        self,
        method: str,
        url: str,
        api_key: str,
        data: bytes | None = None,
        content_type: str = "application/json",
    ) -> dict:
        req_headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {api_key}",
            "Content-Type": content_type,
        }
        req = urllib.request.Request(url, data=data, headers=req_headers, method=method)

        try:
            with urllib.request.urlopen(req) as response:
                response_data = response.read().decode("utf-8")
                if response_data:
                    return json.loads(response_data)
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise ReleaseError(f"{method} {url} failed: {e.code} {e.reason}. {error_body}")
        except urllib.error.URLError as e:
            raise ReleaseError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise ReleaseError(f"Invalid JSON response: {e}")

    def _release_for_tag(self, api_key: str, tag: str) -> dict:
        base = urljoin(self.api_url + "/", f"repos/{self.repo}/releases")
        try:
            return self._request("GET", f"{base}/tags/{quote(tag)}", api_key)
        except ReleaseError as e:
            if " 404 " not in str(e):
                raise
        body = json.dumps({"tag_name": tag, "name": tag}).encode("utf-8")
        return self._request("POST", base, api_key, data=body)

    def files(self, file_glob: str) -> List[Path]:
        found = set()
        for pattern in expand_braces(file_glob):
            found.update(glob.glob(str(self.root / pattern)))
        return sorted(Path(p) for p in found)

    def upload(self, api_key: str, file_glob: str, tag: str, target: str) -> UploadResult:
        if not api_key:
            raise ReleaseError("no API key available for release upload")

        paths = self.files(file_glob)
        if not paths:
            raise ReleaseError(f"no artifacts match {file_glob!r} for target {target}")

        release = self._release_for_tag(api_key, tag)
        release_id = release.get("id")
        if release_id is None:
            raise ReleaseError(f"release for tag {tag} has no id")

        result = UploadResult(tag=tag, target=target)
        for path in paths:
            content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
            url = (
                f"{self.uploads_url}/repos/{self.repo}/releases/{release_id}/assets"
                f"?name={quote(path.name)}"
            )
            self._request("POST", url, api_key, data=path.read_bytes(), content_type=content_type)
            result.uploaded.append(path.name)

        return result
