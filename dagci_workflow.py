# dagci_workflow.py
# Workflow for dagci itself: lint, tests, and a check of the bundled example pipeline
from __future__ import annotations

from dagci import job, on, sh, upload, wf


def workflow():
    return wf(
        job(
            "lint",
            sh("Ruff check", "ruff check src tests"),
            continue_on_error=True,
        ),

        job(
            "test",
            sh("Install package", "pip install -e '.[test]'"),
            sh("Run pytest", "pytest -q --junitxml=pytest-report.xml"),
            upload("Upload test report", "pytest-report", "pytest-report.xml", if_="always()"),
            needs=["lint"],
        ),

        job(
            "example-check",
            sh("Validate DevSecOps example", "dagci validate --workflow workflows/devsecops.yml"),
            sh("Plan DevSecOps example", "dagci plan --workflow workflows/devsecops.yml"),
            needs=["test"],
        ),

        job(
            "build",
            sh("Build sdist and wheel", "python -m build"),
            needs=["test", "example-check"],
            if_="github.ref == 'refs/heads/main'",
        ),
        name="dagci",
        triggers=[on("push", "main"), on("pull_request")],
    )
