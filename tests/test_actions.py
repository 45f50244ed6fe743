"""Tests for the built-in actions."""

import json

import pytest

from onpush.actions import BUILTIN_ACTIONS, ActionRegistry, default_registry
from onpush.actions.checkout import checkout_tree
from onpush.actions.clippy import summarize_diagnostics
from onpush.actions.toolchain import install_argv
from onpush.docker import container_env, docker_command
from onpush.dsl import job, sh, uses
from onpush.errors import CIError, StepFailure
from onpush.secrets import SecretStore


def _run(ctx, step):
    action = default_registry().resolve(step.uses, job=ctx.job.name, step=step.name)
    return action(ctx, step, ctx.resolve_with(step))


class TestRegistry:
    def test_default_registry_covers_builtin_actions(self):
        registry = default_registry()
        assert len(registry.names()) == len(BUILTIN_ACTIONS)
        assert "actions/checkout@v2" in registry
        assert "codecov/codecov-action@v1" in registry

    def test_unknown_action(self):
        with pytest.raises(CIError) as excinfo:
            ActionRegistry().resolve("someone/else@v1", job="build", step="x")
        assert excinfo.value.kind == "unknown_action"

    def test_version_is_kept(self):
        action = default_registry().resolve("actions-rs/tarpaulin@v0.1")
        assert action.version == "v0.1"

    def test_missing_required_input(self, make_ctx):
        ctx = make_ctx()
        step = uses("actions/upload-artifact@v2", name="coverage-report")
        with pytest.raises(CIError) as excinfo:
            _run(ctx, step)
        assert excinfo.value.kind == "missing_input"


class TestCheckout:
    def test_copies_tree_without_vcs_dirs(self, source_tree, tmp_path):
        (source_tree / ".onpush").mkdir()
        (source_tree / ".onpush" / "junk").write_text("x")
        dest = tmp_path / "ws"
        files = checkout_tree(source_tree, dest)
        assert files == ["Cargo.toml", "src/lib.rs"]
        assert not (dest / ".onpush").exists()

    def test_action_fills_workspace(self, make_ctx, source_tree):
        ctx = make_ctx()
        ctx.source_root = source_tree
        result = _run(ctx, uses("actions/checkout@v2"))
        assert (ctx.workspace / "Cargo.toml").exists()
        assert result.output == "checked out 2 file(s)"


class TestToolchain:
    def test_install_argv(self):
        assert install_argv("nightly", components=["clippy"]) == [
            "rustup", "toolchain", "install", "nightly",
            "--profile", "minimal", "--no-self-update",
            "--component", "clippy",
        ]

    def test_installs_and_overrides(self, make_ctx, fake_tools):
        ctx = make_ctx()
        _run(ctx, uses("actions-rs/toolchain@v1", toolchain="stable", override=True))
        assert ctx.env["RUSTUP_TOOLCHAIN"] == "stable"
        assert "rustup toolchain install stable" in fake_tools.read_text()


class TestCoverageActions:
    def test_tarpaulin_leaves_cobertura(self, make_ctx, fake_tools):
        ctx = make_ctx()
        result = _run(ctx, uses("actions-rs/tarpaulin@v0.1", version="0.15.0", args="-- --test-threads 1"))
        assert (ctx.workspace / "cobertura.xml").exists()
        assert result.outputs == {"report": "cobertura.xml"}

    def test_codecov_upload(self, make_ctx, opener):
        ctx = make_ctx(secrets=SecretStore({"CODECOV_TOKEN": "cc-token"}))
        (ctx.workspace / "cobertura.xml").write_text("<coverage/>")
        _run(ctx, uses("codecov/codecov-action@v1", token="${{ secrets.CODECOV_TOKEN }}"))
        (req,) = opener.requests
        assert req.full_url.startswith("https://codecov.test/upload/v2?")
        assert "cc-token" in req.full_url

    def test_codecov_without_token_fails(self, make_ctx, opener):
        ctx = make_ctx()
        (ctx.workspace / "cobertura.xml").write_text("<coverage/>")
        with pytest.raises(CIError) as excinfo:
            _run(ctx, uses("codecov/codecov-action@v1", token="${{ secrets.CODECOV_TOKEN }}"))
        assert excinfo.value.kind == "upload_failed"
        assert opener.requests == []

    def test_codecov_without_report(self, make_ctx):
        ctx = make_ctx(secrets=SecretStore({"CODECOV_TOKEN": "cc-token"}))
        with pytest.raises(CIError) as excinfo:
            _run(ctx, uses("codecov/codecov-action@v1", token="${{ secrets.CODECOV_TOKEN }}"))
        assert excinfo.value.kind == "missing_report"

    def test_rename(self, make_ctx):
        ctx = make_ctx()
        (ctx.workspace / "cobertura.xml").write_text("<coverage/>")
        _run(ctx, uses("onpush/rename", with_={"cobertura.xml": "test-coverage.xml"}))
        assert (ctx.workspace / "test-coverage.xml").exists()
        assert not (ctx.workspace / "cobertura.xml").exists()

    def test_rename_missing_source_fails_step(self, make_ctx):
        ctx = make_ctx()
        with pytest.raises(StepFailure):
            _run(ctx, uses("onpush/rename", with_={"cobertura.xml": "test-coverage.xml"}))

    def test_doc_coverage_posts_percent(self, make_ctx, fake_tools, opener):
        ctx = make_ctx()
        result = _run(ctx, uses("onpush/doc-coverage", name="toolbelt"))

        assert result.outputs == {"percent": "80.0%"}
        assert opener.json_bodies() == [{"name": "toolbelt", "percent": "80.0%"}]
        assert opener.requests[0].full_url == "https://metrics.test/doc"
        assert "| Total | 10 | 8 | 80.0% |" in (ctx.workspace / "doc-coverage.txt").read_text()

    def test_doc_coverage_parse_failure_is_fatal(self, make_ctx, fake_tools, opener):
        ctx = make_ctx()
        step = uses("onpush/doc-coverage", name="toolbelt", env={"FAKE_DOC_BROKEN": "1"})
        with pytest.raises(CIError) as excinfo:
            _run(ctx, step)
        assert excinfo.value.kind == "parse_failed"
        assert opener.requests == []


class TestUploadArtifact:
    def test_stores_file(self, make_ctx):
        ctx = make_ctx()
        (ctx.workspace / "test-coverage.xml").write_text("<coverage/>")
        result = _run(ctx, uses("actions/upload-artifact@v2", name="coverage-report", path="test-coverage.xml"))
        (artifact,) = result.artifacts
        assert artifact.name == "coverage-report"
        assert artifact.files == ["test-coverage.xml"]

    def test_missing_path(self, make_ctx):
        ctx = make_ctx()
        with pytest.raises(CIError) as excinfo:
            _run(ctx, uses("actions/upload-artifact@v2", name="coverage-report", path="nope.xml"))
        assert excinfo.value.kind == "artifact_missing"


class TestClippy:
    def test_summarize(self):
        lines = [
            "Compiling toolbelt v0.1.0",
            json.dumps({"reason": "compiler-message", "message": {"level": "warning", "rendered": "w1"}}),
            json.dumps({"reason": "compiler-message", "message": {"level": "warning", "rendered": "w2"}}),
            json.dumps({"reason": "compiler-message", "message": {"level": "error", "rendered": "e1"}}),
            json.dumps({"reason": "build-finished", "success": False}),
            "{not json",
        ]
        summary = summarize_diagnostics("\n".join(lines))
        assert summary.counts == {"warning": 2, "error": 1}
        assert summary.error_count == 1
        assert summary.errors == ["e1"]
        assert summary.describe() == "1 error, 2 warning"

    def test_warnings_pass(self, make_ctx, fake_tools):
        ctx = make_ctx(secrets=SecretStore({"GITHUB_TOKEN": "gh-token"}))
        result = _run(
            ctx,
            uses("actions-rs/clippy-check@v1", token="${{ secrets.GITHUB_TOKEN }}", args="--all-features --all-targets"),
        )
        assert result.outputs == {"warning": "1"}

    def test_errors_fail(self, make_ctx, fake_tools):
        ctx = make_ctx()
        step = uses("actions-rs/clippy-check@v1", env={"FAKE_CLIPPY_ERROR": "1"})
        with pytest.raises(StepFailure) as excinfo:
            _run(ctx, step)
        assert "this looks like a bug" in excinfo.value.output


class TestContainer:
    def test_container_env_forwards_only_changes(self):
        env = {"PATH": "/x", "HOME": "/root", "CI": "true", "RUSTUP_TOOLCHAIN": "nightly"}
        host = {"PATH": "/usr/bin", "HOME": "/root"}
        assert container_env(env, host) == {
            "CI": "true",
            "RUSTUP_TOOLCHAIN": "nightly",
            "ONPUSH_WORKSPACE": "/workspace",
        }

    def test_docker_command(self, make_ctx, monkeypatch):
        monkeypatch.setattr("onpush.docker.check_docker_available", lambda job="": None)
        ctx = make_ctx(job("build", sh("b", "cargo build"), container="rust:1.70"))
        step = sh("b", "cargo build", cwd="crate")
        argv = docker_command(ctx, step, step.run, env={"CI": "true"})
        assert argv[:3] == ["docker", "run", "--rm"]
        assert ["-v", f"{ctx.workspace}:/workspace"] == argv[3:5]
        assert ["-w", "/workspace/crate"] == argv[5:7]
        assert argv[-5:] == ["rust:1.70", "sh", "-e", "-c", "cargo build"]
