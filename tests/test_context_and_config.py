import pytest

from dagci.config import Settings, secrets_from_env
from dagci.context import Context, Secrets


def test_secrets_never_show_in_repr():
    secrets = Secrets({"TOKEN": "hunter2"})
    assert "hunter2" not in repr(secrets)
    assert secrets["TOKEN"] == "hunter2"


def test_mask_replaces_longest_value_first():
    secrets = Secrets({"SHORT": "abc", "LONG": "abcdef"})
    assert secrets.mask("token=abcdef") == "token=***"
    assert secrets.mask("") == ""


def test_context_narrowing_returns_new_objects():
    base = Context.create(event="push", branch="master", env={"A": "1"})
    job_ctx = base.for_job("build", {"setup": "success"}, env={"B": "2"})
    step_ctx = job_ctx.for_step("compile", job_failed=True, env={"A": "3"})

    assert base.job is None
    assert dict(base.env) == {"A": "1"}
    assert job_ctx.job == "build"
    assert dict(job_ctx.env) == {"A": "1", "B": "2"}
    assert dict(step_ctx.env) == {"A": "3", "B": "2"}
    assert step_ctx.checks.failure is True
    assert step_ctx.checks.success is False


def test_context_is_immutable():
    ctx = Context.create()
    with pytest.raises(Exception):
        ctx.branch = "other"
    with pytest.raises(TypeError):
        ctx.env["X"] = "1"


def test_workflow_env_is_the_base_layer():
    ctx = Context.create(env={"IMAGE_TAG": "override"}).for_workflow("ci", {"IMAGE_TAG": "1", "IMAGE_NAME": "web"})
    assert dict(ctx.env) == {"IMAGE_TAG": "override", "IMAGE_NAME": "web"}
    assert ctx.workflow == "ci"


def test_lookup_paths():
    ctx = Context.create(event="push", branch="master", sha="abc", run_id="r1").for_job("deploy", {"build": "failure"})
    assert ctx.lookup("github.ref") == "refs/heads/master"
    assert ctx.lookup("GITHUB.EVENT_NAME") == "push"
    assert ctx.lookup("needs.build.result") == "failure"
    assert ctx.lookup("github.run_id") == "r1"
    assert ctx.lookup("nothing.here") is None
    assert ctx.lookup("github.ref.deeper") is None


def test_detached_context_has_no_ref():
    assert Context.create(branch=None).ref is None


def test_settings_from_env():
    settings = Settings.from_env({
        "DAGCI_MAX_WORKERS": "4",
        "DAGCI_STEP_TIMEOUT": "2.5",
        "DAGCI_ARTIFACT_DIR": "out",
        "DAGCI_DEBUG": "yes",
    })
    assert settings == Settings(max_workers=4, step_timeout=2.5, artifact_dir="out", workdir=".", debug=True)
    assert Settings.from_env({}) == Settings()


def test_settings_reject_bad_numbers():
    with pytest.raises(ValueError, match="DAGCI_MAX_WORKERS"):
        Settings.from_env({"DAGCI_MAX_WORKERS": "many"})


def test_secrets_from_env():
    environ = {"CI_SECRET_TOKEN": "t", "CI_SECRET_": "ignored", "OTHER": "x"}
    assert secrets_from_env("CI_SECRET_", environ) == {"TOKEN": "t"}
