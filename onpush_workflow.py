# onpush_workflow.py
# Push pipeline for the toolbelt crate: build, test, coverage, doc coverage and lint.
from __future__ import annotations

from onpush.dsl import job, pipeline, sh, uses


def pipeline_definition():
    return pipeline(
        "ci",
        job(
            "build",
            uses("actions/checkout@v2"),
            sh("Build", "cargo build --verbose"),
        ),
        job(
            "test",
            uses("actions/checkout@v2"),
            sh("Run tests", "cargo test --all-targets --verbose"),
        ),
        job(
            "coverage",
            uses("actions/checkout@v2"),
            uses("actions-rs/toolchain@v1", toolchain="stable", override=True),
            uses("actions-rs/tarpaulin@v0.1", version="0.15.0", args="-- --test-threads 1"),
            uses("codecov/codecov-action@v1", token="${{ secrets.CODECOV_TOKEN }}"),
            uses("onpush/rename", "Rename coverage report", with_={"cobertura.xml": "test-coverage.xml"}),
            uses("actions/upload-artifact@v2", name="coverage-report", path="test-coverage.xml"),
        ),
        job(
            "doc-coverage",
            uses("actions-rs/toolchain@v1", toolchain="nightly", override=True),
            uses("actions/checkout@v2"),
            uses("onpush/doc-coverage", "Calculate documentation coverage", name="toolbelt"),
            # same artifact name as the coverage job; kept apart per job in the store
            uses("actions/upload-artifact@v2", name="coverage-report", path="doc-coverage.txt"),
        ),
        job(
            "clippy",
            uses("actions/checkout@v2"),
            sh("Install clippy", "rustup component add clippy"),
            uses("actions-rs/clippy-check@v1", token="${{ secrets.GITHUB_TOKEN }}", args="--all-features --all-targets"),
        ),
        on=["push"],
    )
