"""Tests for matrix expansion and job environments."""

import pytest

from matrixci.dsl import cmd, entry, matrix
from matrixci.errors import DuplicateEnvKey, MalformedMatrixEntry
from matrixci.expansion import DEFAULT_HOST, expand_matrix, job_environment
from matrixci.model import MatrixEntry, TagContext

from conftest import DARWIN, LINUX_GNU, LINUX_MUSL


def _description(**kwargs):
    return matrix(
        entry("linux", "stable", LINUX_GNU),
        entry("linux", "stable", LINUX_MUSL),
        entry("osx", "stable", DARWIN),
        entry("linux", "nightly", LINUX_GNU),
        entry("linux", "nightly", install=["cargo install rustfmt"], script=["cargo fmt -- --check"]),
        install=[cmd("rustup target add $TARGET", when="$HOST != $TARGET")],
        script="ci/script.bash",
        **kwargs,
    )


class TestExpandMatrix:
    def test_one_job_per_entry_in_order(self):
        description = _description()
        jobs = expand_matrix(description)

        assert len(jobs) == len(description.entries)
        for index, (job, src) in enumerate(zip(jobs, description.entries)):
            assert job.index == index
            assert (job.os, job.channel, job.target) == (src.os, src.channel, src.target)

    def test_names_are_unique(self):
        jobs = expand_matrix(_description())
        assert len({j.name for j in jobs}) == len(jobs)

    def test_idempotent(self):
        description = _description()
        assert expand_matrix(description) == expand_matrix(description)

    def test_overrides_are_kept(self):
        jobs = expand_matrix(_description())
        fmt = jobs[-1]
        assert [c.run for c in fmt.install] == ["cargo install rustfmt"]
        assert [c.run for c in fmt.script] == ["cargo fmt -- --check"]
        assert fmt.target == ""

    def test_empty_override_means_no_override(self):
        description = matrix(entry("linux", "stable", LINUX_GNU, install=[]))
        job = expand_matrix(description)[0]
        assert job.install is None
        assert job.override("install") is None

    def test_target_from_entry_env(self):
        description = matrix(entry("linux", "stable", env={"TARGET": LINUX_MUSL, "FEATURES": "x"}))
        job = expand_matrix(description)[0]
        assert job.target == LINUX_MUSL
        assert dict(job.env) == {"FEATURES": "x"}

    @pytest.mark.parametrize("field", ["os", "channel"])
    def test_missing_required_field(self, field):
        values = {"os": "linux", "channel": "stable"}
        values[field] = None
        description = matrix(entry("linux", "stable"), MatrixEntry(**values))

        with pytest.raises(MalformedMatrixEntry) as exc:
            expand_matrix(description)
        assert exc.value.index == 1
        assert exc.value.field == field

    def test_target_in_global_env(self):
        description = matrix(entry("linux", "stable"), env={"TARGET": LINUX_GNU})
        with pytest.raises(DuplicateEnvKey) as exc:
            expand_matrix(description)
        assert exc.value.key == "TARGET"

    def test_host_in_entry_env(self):
        description = matrix(entry("linux", "stable", env={"HOST": LINUX_MUSL}), env={"HOST": LINUX_GNU})
        with pytest.raises(DuplicateEnvKey) as exc:
            expand_matrix(description)
        assert exc.value.key == "HOST"

    def test_conflicting_values(self):
        description = matrix(entry("linux", "stable", env={"RUSTFLAGS": "-D warnings"}), env={"RUSTFLAGS": ""})
        with pytest.raises(DuplicateEnvKey):
            expand_matrix(description)

    def test_same_value_is_not_a_conflict(self):
        description = matrix(entry("linux", "stable", env={"RUSTFLAGS": "x"}), env={"RUSTFLAGS": "x"})
        assert len(expand_matrix(description)) == 1

    def test_target_field_and_env_disagree(self):
        description = matrix(entry("linux", "stable", LINUX_GNU, env={"TARGET": LINUX_MUSL}))
        with pytest.raises(DuplicateEnvKey):
            expand_matrix(description)

    def test_builtin_variable(self):
        description = matrix(entry("linux", "stable"), env={"TRAVIS_TAG": "v1"})
        with pytest.raises(DuplicateEnvKey):
            expand_matrix(description)


class TestJobEnvironment:
    def test_builtins_and_defaults(self):
        description = _description()
        job = expand_matrix(description)[1]
        env = job_environment(job, description, TagContext.from_tag(None), project="myproj", base={})

        assert env["HOST"] == DEFAULT_HOST
        assert env["TARGET"] == LINUX_MUSL
        assert env["TRAVIS_OS_NAME"] == env["CI_OS_NAME"] == "linux"
        assert env["TRAVIS_RUST_VERSION"] == env["CI_CHANNEL"] == "stable"
        assert env["PROJECT_NAME"] == "myproj"
        assert "TRAVIS_TAG" not in env

    def test_target_always_present(self):
        description = _description()
        fmt = expand_matrix(description)[-1]
        env = job_environment(fmt, description, TagContext.from_tag(None), project="p", base={})
        assert env["TARGET"] == ""

    def test_tag_variables_on_tag_runs(self):
        description = _description()
        job = expand_matrix(description)[0]
        env = job_environment(job, description, TagContext.from_tag("v1.2.0"), project="p", base={})
        assert env["TRAVIS_TAG"] == env["CI_TAG"] == "v1.2.0"

    def test_stale_tag_from_base_env_removed(self):
        description = _description()
        job = expand_matrix(description)[0]
        env = job_environment(
            job, description, TagContext.from_tag(None), project="p", base={"TRAVIS_TAG": "old"}
        )
        assert "TRAVIS_TAG" not in env

    def test_global_and_job_env_layering(self):
        description = matrix(
            entry("linux", "stable", env={"FEATURES": "a"}),
            env={"HOST": "i686-unknown-linux-gnu", "RUST_BACKTRACE": "1"},
        )
        job = expand_matrix(description)[0]
        env = job_environment(job, description, TagContext.from_tag(None), project="p", base={"PATH": "/bin"})
        assert env["PATH"] == "/bin"
        assert env["HOST"] == "i686-unknown-linux-gnu"
        assert env["RUST_BACKTRACE"] == "1"
        assert env["FEATURES"] == "a"

    def test_each_call_returns_a_fresh_mapping(self):
        description = _description()
        job = expand_matrix(description)[0]
        tag = TagContext.from_tag(None)
        first = job_environment(job, description, tag, project="p", base={})
        first["TARGET"] = "changed"
        second = job_environment(job, description, tag, project="p", base={})
        assert second["TARGET"] == LINUX_GNU
