"""End-to-end tests for pipeline execution."""

from pathlib import Path

import pytest

from onpush.actions import Action, ActionResult, default_registry
from onpush.artifacts import ArtifactStore
from onpush.dsl import job, on, pipeline, sh, uses
from onpush.errors import CIError
from onpush.loader import load_pipeline
from onpush.model import JobStatus, StepStatus, TriggerEvent
from onpush.runner import run_pipeline, select_jobs
from onpush.secrets import SecretStore
from onpush.ui.console import Console

REPO_ROOT = Path(__file__).resolve().parents[1]
PUSH = TriggerEvent("push", ref="refs/heads/main", sha="0123abcd")


@pytest.fixture
def run(settings, source_tree, reporter):
    """run_pipeline with the test settings, source tree and fake reporter."""

    def _run(p, **kwargs):
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("source_root", source_tree)
        kwargs.setdefault("reporter", reporter)
        return run_pipeline(p, kwargs.pop("event", PUSH), **kwargs)

    return _run


class TestReferencePipeline:
    @pytest.fixture
    def secrets(self):
        return SecretStore({"CODECOV_TOKEN": "cc-secret-value", "GITHUB_TOKEN": "gh-secret-value"})

    @pytest.mark.parametrize("workflow", ["onpush_workflow.py", "workflows/ci.yml"])
    def test_all_jobs_succeed(self, run, secrets, fake_tools, opener, capsys, workflow):
        result = run(load_pipeline(REPO_ROOT / workflow), secrets=secrets)

        assert result.status == "succeeded"
        assert result.exit_code == 0
        assert set(result.jobs) == {"build", "test", "coverage", "doc-coverage", "clippy"}
        assert all(r.status is JobStatus.SUCCEEDED for r in result.jobs.values())

        # both jobs keep their "coverage-report" artifact
        coverage = result.jobs["coverage"].artifacts
        doc = result.jobs["doc-coverage"].artifacts
        assert [(a.name, a.files) for a in coverage] == [("coverage-report", ["test-coverage.xml"])]
        assert [(a.name, a.files) for a in doc] == [("coverage-report", ["doc-coverage.txt"])]

        assert opener.json_bodies() == [{"name": "toolbelt", "percent": "80.0%"}]
        uploads = [r for r in opener.requests if "/upload/v2" in r.full_url]
        assert len(uploads) == 1

        calls = fake_tools.read_text().splitlines()
        assert "tarpaulin stable" in calls
        assert "doc nightly" in calls
        assert "build none" in calls

        out = capsys.readouterr()
        assert "cc-secret-value" not in out.out + out.err
        assert "gh-secret-value" not in out.out + out.err
        assert "PIPELINE: SUCCEEDED" in out.out

    def test_rerun_produces_the_same_artifacts(self, run, secrets, settings, fake_tools, opener):
        p = load_pipeline(REPO_ROOT / "onpush_workflow.py")
        first = run(p, secrets=secrets, run_id="run-a")
        second = run(p, secrets=secrets, run_id="run-b")
        assert first.ok and second.ok

        def names(run_id):
            return {(a.job, a.name) for a in ArtifactStore(settings.artifact_dir, run_id).list()}

        assert names("run-a") == names("run-b") == {
            ("coverage", "coverage-report"),
            ("doc-coverage", "coverage-report"),
        }

    def test_missing_codecov_token_fails_only_coverage(self, run, fake_tools, opener):
        result = run(load_pipeline(REPO_ROOT / "onpush_workflow.py"), secrets=SecretStore())

        assert result.status == "failed"
        cov = result.jobs["coverage"]
        assert cov.status is JobStatus.FAILED
        assert [s.status for s in cov.steps] == [
            StepStatus.SUCCEEDED,
            StepStatus.SUCCEEDED,
            StepStatus.SUCCEEDED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
            StepStatus.SKIPPED,
        ]
        assert "upload_failed" in cov.error
        # the upload step after the failure was skipped, so nothing was stored
        assert cov.artifacts == []
        others = {n: r.status for n, r in result.jobs.items() if n != "coverage"}
        assert set(others.values()) == {JobStatus.SUCCEEDED}


class TestFailures:
    def test_failed_job_does_not_cancel_siblings(self, run):
        p = pipeline(
            "ci",
            job("build", sh("Build", "echo compiling; exit 1"), sh("After", "echo never")),
            job("test", sh("Test", "echo tests ok")),
            job("clippy", sh("Lint", "echo lint ok")),
        )
        result = run(p)

        build = result.jobs["build"]
        assert build.status is JobStatus.FAILED
        assert build.exit_code == 1
        assert [s.status for s in build.steps] == [StepStatus.FAILED, StepStatus.SKIPPED]
        assert "compiling" in build.steps[0].output
        assert result.jobs["test"].status is JobStatus.SUCCEEDED
        assert result.jobs["clippy"].status is JobStatus.SUCCEEDED
        assert result.status == "failed"
        assert result.exit_code == 1

    def test_always_steps_run_after_failure(self, run):
        p = pipeline(
            "ci",
            job(
                "build",
                sh("Fail", "exit 2"),
                sh("Skipped", "true"),
                sh("Cleanup", "echo cleaning", always=True),
            ),
        )
        build = run(p).jobs["build"]
        assert [s.status for s in build.steps] == [
            StepStatus.FAILED,
            StepStatus.SKIPPED,
            StepStatus.SUCCEEDED,
        ]
        assert build.status is JobStatus.FAILED
        # the cleanup step ran last
        assert build.exit_code == 0
        assert build.steps[0].exit_code == 2
        assert build.error.startswith("[build] step 'Fail' failed (exit=2)")

    def test_dependents_of_failed_job_are_skipped(self, run):
        p = pipeline(
            "ci",
            job("build", sh("Build", "exit 1")),
            job("deploy", sh("Deploy", "true"), needs=["build"]),
            job("docs", sh("Docs", "true")),
        )
        result = run(p)
        assert result.jobs["deploy"].status is JobStatus.SKIPPED
        assert result.jobs["deploy"].steps == []
        assert result.jobs["docs"].status is JobStatus.SUCCEEDED

    def test_fail_fast_stops_scheduling(self, run):
        p = pipeline(
            "ci",
            job("build", sh("Build", "exit 1")),
            job("test", sh("Test", "true")),
            job("clippy", sh("Lint", "true")),
        )
        result = run(p, max_workers=1, fail_fast=True)
        assert result.jobs["build"].status is JobStatus.FAILED
        assert result.jobs["test"].status is JobStatus.SKIPPED
        assert result.jobs["clippy"].status is JobStatus.SKIPPED
        assert result.jobs["test"].error == "not started: fail-fast"

    def test_without_fail_fast_everything_runs(self, run):
        p = pipeline(
            "ci",
            job("build", sh("Build", "exit 1")),
            job("test", sh("Test", "true")),
        )
        result = run(p, max_workers=1)
        assert result.jobs["test"].status is JobStatus.SUCCEEDED

    def test_unknown_action_fails_the_job(self, run):
        p = pipeline("ci", job("build", uses("someone/missing@v1")))
        build = run(p).jobs["build"]
        assert build.status is JobStatus.FAILED
        assert build.error.startswith("unknown_action")

    def test_undecodable_output_does_not_fail_the_step(self, run):
        p = pipeline(
            "ci",
            job("build", sh("Bytes", "printf '\\377\\376ok\\n'; exit 0"), sh("Cleanup", "true", always=True)),
        )
        build = run(p).jobs["build"]
        assert build.status is JobStatus.SUCCEEDED
        assert [s.status for s in build.steps] == [StepStatus.SUCCEEDED, StepStatus.SUCCEEDED]
        assert build.exit_code == 0
        assert "ok" in build.steps[0].output

    def test_action_crash_fails_only_its_step(self, run):
        class Broken(Action):
            name = "acme/broken"

            def run(self, ctx, step, with_):
                raise RuntimeError("boom")

        registry = default_registry()
        registry.register(Broken)
        p = pipeline(
            "ci",
            job(
                "build",
                uses("acme/broken@v1"),
                sh("Skipped", "true"),
                sh("Cleanup", "echo cleaning", always=True),
            ),
        )
        build = run(p, registry=registry).jobs["build"]
        assert build.status is JobStatus.FAILED
        assert [s.status for s in build.steps] == [
            StepStatus.FAILED,
            StepStatus.SKIPPED,
            StepStatus.SUCCEEDED,
        ]
        assert build.steps[0].exit_code == 1
        assert build.error == "step_error: RuntimeError: boom"


class TestSteps:
    def test_steps_share_the_workspace(self, run):
        p = pipeline(
            "ci",
            job(
                "coverage",
                sh("Report", "echo '<coverage/>' > cobertura.xml"),
                uses("onpush/rename", with_={"cobertura.xml": "test-coverage.xml"}),
                uses("actions/upload-artifact@v2", name="coverage-report", path="test-coverage.xml"),
            ),
        )
        result = run(p)
        (artifact,) = result.jobs["coverage"].artifacts
        assert artifact.files == ["test-coverage.xml"]
        assert (Path(artifact.path) / "test-coverage.xml").read_text().strip() == "<coverage/>"

    def test_jobs_get_separate_workspaces(self, run):
        p = pipeline(
            "ci",
            job("writer", sh("Write", "echo x > marker")),
            job("reader", sh("Read", "test ! -e marker"), needs=["writer"]),
        )
        assert run(p).status == "succeeded"

    def test_workspace_removed_unless_kept(self, run, settings):
        p = pipeline("ci", job("build", sh("Build", "true")))
        result = run(p)
        assert list((settings.work_dir / result.run_id).iterdir()) == []

        kept = run(p, settings=settings.with_overrides(keep_workspace=True))
        assert len(list((settings.work_dir / kept.run_id).iterdir())) == 1

    def test_secret_masked_in_step_output(self, run):
        p = pipeline(
            "ci",
            job("build", sh("Echo", "echo token=$TOKEN", env={"TOKEN": "${{ secrets.TOKEN }}"})),
        )
        result = run(p, secrets=SecretStore({"TOKEN": "hunter2"}))
        output = result.jobs["build"].steps[0].output
        assert output == "token=***"

    def test_run_secrets_do_not_leak_into_the_callers_console(self, run, capsys):
        console = Console()
        # the failing step prints its output tail
        p = pipeline("ci", job("build", sh("Echo", "echo $TOKEN; exit 1", env={"TOKEN": "${{ secrets.TOKEN }}"})))

        run(p, secrets=SecretStore({"TOKEN": "first-token"}), console=console)
        assert "first-token" not in capsys.readouterr().out
        assert console.masker.mask("first-token") == "first-token"

        run(p, secrets=SecretStore({"TOKEN": "second-token"}), console=console)
        console.print_info("first-token")
        out = capsys.readouterr().out
        assert "second-token" not in out
        assert "first-token" in out

    def test_custom_action(self, run):
        calls = []

        class Notify(Action):
            name = "acme/notify"
            required = ("channel",)

            def run(self, ctx, step, with_):
                calls.append((ctx.job.name, with_["channel"], self.version))
                return ActionResult(output="sent")

        registry = default_registry()
        registry.register(Notify)
        p = pipeline("ci", job("build", uses("acme/notify@v3", channel="#ci")))
        result = run(p, registry=registry)
        assert result.status == "succeeded"
        assert calls == [("build", "#ci", "v3")]
        assert result.jobs["build"].steps[0].output == "sent"


class TestTriggers:
    def test_not_triggered_runs_nothing(self, run, settings):
        p = pipeline(
            "ci",
            job("build", sh("Build", "touch should-not-exist")),
            on=[on("push", branches=["main"])],
        )
        result = run(p, event=TriggerEvent("push", ref="refs/heads/feature"))
        assert result.status == "skipped"
        assert result.ok
        assert result.jobs == {}
        assert not settings.work_dir.exists()

    def test_only_selects_needed_jobs(self):
        jobs = [
            job("build", sh("b", "true")),
            job("test", sh("t", "true"), needs=["build"]),
            job("clippy", sh("c", "true")),
        ]
        assert [j.name for j in select_jobs(jobs, ["test"])] == ["build", "test"]
        with pytest.raises(CIError) as excinfo:
            select_jobs(jobs, ["nope"])
        assert excinfo.value.kind == "unknown_job"

    def test_only_runs_subset(self, run):
        p = pipeline("ci", job("build", sh("b", "true")), job("clippy", sh("c", "exit 1")))
        result = run(p, only=["build"])
        assert list(result.jobs) == ["build"]
        assert result.status == "succeeded"
