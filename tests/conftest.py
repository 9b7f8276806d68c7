"""Pytest fixtures for matrixci tests."""

import os
import tempfile
import threading
from collections.abc import Generator
from pathlib import Path

import pytest

from matrixci.deploy import UploadResult
from matrixci.errors import ReleaseError
from matrixci.ui.console import Console, set_console

_original_cwd = Path.cwd()

LINUX_GNU = "x86_64-unknown-linux-gnu"
LINUX_MUSL = "x86_64-unknown-linux-musl"
DARWIN = "x86_64-apple-darwin"


class FakeRunner:
    """Records commands instead of running them."""

    def __init__(self, exit_codes=None, outputs=None):
        self.exit_codes = dict(exit_codes or {})
        self.outputs = dict(outputs or {})
        self.calls = []
        self._lock = threading.Lock()

    def run(self, command, env, cwd, cancel=None):
        with self._lock:
            self.calls.append((command, dict(env)))
        return self.exit_codes.get(command, 0), self.outputs.get(command, "")

    @property
    def commands(self):
        return [c for c, _ in self.calls]

    def commands_for(self, target):
        return [c for c, env in self.calls if env.get("TARGET") == target]


class FakeReleaseClient:
    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = []

    def upload(self, api_key, file_glob, tag, target):
        self.uploads.append((api_key, file_glob, tag, target))
        if self.fail:
            raise ReleaseError("upload rejected")
        return UploadResult(tag=tag, target=target, uploaded=[file_glob.replace("*", "tar.gz")])


@pytest.fixture(autouse=True)
def quiet_console() -> None:
    set_console(Console(debug=False))


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory and chdir into it."""
    with tempfile.TemporaryDirectory() as tmpdir:
        os.chdir(tmpdir)
        try:
            yield Path(tmpdir)
        finally:
            os.chdir(_original_cwd)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def release_client() -> FakeReleaseClient:
    return FakeReleaseClient()


TRAVIS_YML = """\
language: rust
cache: cargo
matrix:
  include:
    # Stable channel.
    - os: linux
      rust: stable
      env: TARGET=x86_64-unknown-linux-gnu
    - os: linux
      rust: stable
      env: TARGET=x86_64-unknown-linux-musl
    - os: osx
      rust: stable
      env: TARGET=x86_64-apple-darwin

    # Nightly channel.
    - os: linux
      rust: nightly
      env: TARGET=x86_64-unknown-linux-gnu

    # Code formatting check
    - os: linux
      rust: nightly
      install:
        - cargo install --debug --force rustfmt-nightly
      script: cargo fmt -- --check

sudo: required

before_install:
  - ci/before_install.bash

env:
  global:
    - HOST=x86_64-unknown-linux-gnu
    - PROJECT_NAME=myproj

install:
  - if [[ $TRAVIS_OS_NAME = linux && $HOST != $TARGET ]]; then rustup target add $TARGET; fi

script:
  - ci/script.bash

before_deploy:
  - bash ci/before_deploy.bash

deploy:
  provider: releases
  api_key:
    secure: "not-decryptable-here"
  file_glob: true
  file:
    - $PROJECT_NAME-$TRAVIS_TAG-$TARGET.*
  skip_cleanup: true
  on:
    tags: true
    condition: $TRAVIS_RUST_VERSION = stable && $TARGET != ""

notifications:
  email:
    on_success: never
"""


@pytest.fixture
def travis_yml(temp_dir: Path) -> Path:
    path = temp_dir / ".travis.yml"
    path.write_text(TRAVIS_YML)
    return path
