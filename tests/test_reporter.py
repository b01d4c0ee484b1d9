import json

from dagci.errors import JobFailure, ValidationError
from dagci.model import Job, JobRecord, JobState, Outcome, Step, StepResult, StepStatus
from dagci.reporter import RunReport, exit_code_for, summarize
from dagci.ui.console import Console


def _record(job_id, state, *, advisory=False, steps=()):
    job = Job(id=job_id, steps=(Step(name="s", run="x"),), continue_on_error=advisory)
    return JobRecord(job=job, state=state, steps=list(steps))


def test_all_success_is_succeeded():
    records = [_record("a", JobState.SUCCESS), _record("b", JobState.SKIPPED)]
    assert summarize(records) is Outcome.SUCCEEDED


def test_non_advisory_failure_fails_the_run():
    records = [_record("a", JobState.SUCCESS), _record("b", JobState.FAILURE)]
    assert summarize(records) is Outcome.FAILED
    assert exit_code_for(Outcome.FAILED) == 1


def test_advisory_failure_is_partial():
    records = [_record("a", JobState.SUCCESS), _record("lint", JobState.FAILURE, advisory=True)]
    assert summarize(records) is Outcome.PARTIALLY_SUCCEEDED
    assert exit_code_for(Outcome.PARTIALLY_SUCCEEDED) == 0


def test_tolerated_step_failure_is_partial():
    tolerated = StepResult(name="scan", status=StepStatus.FAILURE, tolerated=True)
    records = [_record("sca", JobState.SUCCESS, steps=[tolerated])]
    assert summarize(records) is Outcome.PARTIALLY_SUCCEEDED


def test_cancellation_wins():
    records = [_record("a", JobState.SUCCESS), _record("b", JobState.CANCELLED)]
    assert summarize(records) is Outcome.CANCELLED
    assert summarize([_record("a", JobState.SUCCESS)], cancelled=True) is Outcome.CANCELLED
    assert exit_code_for(Outcome.CANCELLED) == 130


def test_validation_report_lists_every_job():
    jobs = [Job(id="a", steps=(Step(name="s", run="x"),)), Job(id="b", steps=(Step(name="s", run="x"),))]
    error = ValidationError("cycle", details={"cycle": ["a", "b", "a"]})
    report = RunReport.for_validation_error("wf", jobs, error)

    assert report.states() == {"a": "pending", "b": "pending"}
    assert report.outcome is Outcome.FAILED
    assert report.exit_code == 2
    assert not report.succeeded


def test_report_json(tmp_path):
    failed = _record("b", JobState.FAILURE)
    failed.error = JobFailure("step 's' failed", job="b", step="s")
    report = RunReport.from_records("wf", "run-1", [_record("a", JobState.SUCCESS), failed])

    path = report.write_json(tmp_path / "reports" / "run.json")
    data = json.loads(path.read_text(encoding="utf-8"))

    assert data["outcome"] == "failed"
    assert data["exit_code"] == 1
    assert [j["id"] for j in data["jobs"]] == ["a", "b"]
    assert data["jobs"][1]["error"]["kind"] == "job_failure"
    assert data["jobs"][1]["error"]["step"] == "s"


def test_results_table(capsys):
    report = RunReport.from_records(
        "wf",
        "run-1",
        [
            _record("build", JobState.SUCCESS),
            _record("lint", JobState.FAILURE, advisory=True),
            _record("deploy", JobState.SKIPPED),
        ],
    )
    Console().print_results(report)
    out = capsys.readouterr().out

    assert "RESULTS" in out
    assert "lint    FAILURE (advisory)" in out
    assert "OUTCOME: PARTIALLY_SUCCEEDED (exit 0)" in out
