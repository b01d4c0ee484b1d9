import pytest

from dagci import JobBuilder, job, matrix, on, sh, upload, uses, wf
from dagci.model import Trigger, Workflow


def test_job_accepts_varargs_and_steps_list():
    j = job("build", sh("b", "make"), steps_list=[sh("a", "configure")], needs="setup")
    assert [s.name for s in j.steps] == ["a", "b"]
    assert j.needs == ("setup",)


def test_job_default_cwd_does_not_override_step_cwd():
    j = job("build", sh("a", "make"), sh("b", "make", cwd="sub"), cwd="app")
    assert [s.cwd for s in j.steps] == ["app", "sub"]


def test_job_requires_steps():
    with pytest.raises(ValueError):
        job("empty")


def test_uses_and_upload():
    checkout = uses("checkout", "actions/checkout@v4")
    assert checkout.uses == "actions/checkout@v4"
    assert checkout.run is None

    step = upload("save report", "zap-report", "report.html", if_="always()")
    assert step.with_ == {"name": "zap-report", "path": "report.html"}
    assert step.condition == "always()"


def test_builder():
    built = (
        JobBuilder("push-image")
        .named("Push image")
        .depends_on("sca", "sast")
        .define_step("push", "docker push app")
        .use_action("upload", "actions/upload-artifact@v4", with_={"name": "x", "path": "y"})
        .with_env(IMAGE_TAG=1)
        .when("github.ref == 'refs/heads/master'")
        .advisory()
        .timeout_after(60)
        .build()
    )
    assert built.title == "Push image"
    assert built.needs == ("sca", "sast")
    assert built.env == {"IMAGE_TAG": "1"}
    assert built.condition == "github.ref == 'refs/heads/master'"
    assert built.continue_on_error is True
    assert built.timeout == 60
    assert len(built.steps) == 2


def test_builder_without_steps():
    with pytest.raises(ValueError):
        JobBuilder("x").build()


def test_wf_flattens_matrix_jobs():
    jobs = matrix("node", ["18", "20"]).jobs(lambda v: job(f"test-node{v}", sh("test", "npm test", env={"NODE": v})))
    workflow = wf(job("lint", sh("lint", "npm run lint")), jobs, name="ci", triggers=[on("push", "main")], env={"CI": True})

    assert isinstance(workflow, Workflow)
    assert workflow.job_ids == ["lint", "test-node18", "test-node20"]
    assert workflow.triggers == (Trigger("push", ("main",)),)
    assert workflow.env == {"CI": "True"}


def test_trigger_matching():
    trigger = on("push", "master", "release/*")
    assert trigger.matches("push", "master")
    assert trigger.matches("push", "release/1.2")
    assert not trigger.matches("push", "feature/x")
    assert not trigger.matches("pull_request", "master")
    assert not trigger.matches("push", None)
    assert on("push").matches("push", None)
