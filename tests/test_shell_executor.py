import sys

import pytest

from dagci.context import CancelToken, Context
from dagci.errors import CancellationError, StepFailure, StepTimeout
from dagci.executor import ActionRegistry, ShellExecutor
from dagci.model import Step, StepResult, StepStatus

pytestmark = pytest.mark.skipif(sys.platform.startswith("win"), reason="uses POSIX shell commands")


@pytest.fixture
def ctx():
    return Context.create(
        branch="master",
        env={"IMAGE_NAME": "web"},
        secrets={"TOKEN": "hunter2"},
    ).for_job("build", {})


def test_successful_command(tmp_path, ctx):
    result = ShellExecutor(tmp_path).run(Step(name="echo", run="echo hello"), ctx)
    assert result.status is StepStatus.SUCCESS
    assert result.exit_code == 0
    assert result.stdout.strip() == "hello"


def test_failing_command(tmp_path, ctx):
    result = ShellExecutor(tmp_path).run(Step(name="fail", run="exit 3"), ctx)
    assert result.status is StepStatus.FAILURE
    assert result.exit_code == 3
    assert "exited with 3" in result.error


def test_env_and_interpolation(tmp_path, ctx):
    step = Step(name="env", run='echo "$IMAGE_NAME ${{ env.IMAGE_NAME }} ${{ github.ref }}"')
    result = ShellExecutor(tmp_path).run(step, ctx)
    assert result.stdout.strip() == "web web refs/heads/master"


def test_secret_values_are_masked(tmp_path, ctx):
    result = ShellExecutor(tmp_path).run(Step(name="leak", run="echo ${{ secrets.TOKEN }}"), ctx)
    assert "hunter2" not in result.stdout
    assert result.stdout.strip() == "***"


def test_working_directory(tmp_path, ctx):
    (tmp_path / "app").mkdir()
    result = ShellExecutor(tmp_path).run(Step(name="pwd", run="pwd", cwd="app"), ctx)
    assert result.stdout.strip().endswith("app")

    with pytest.raises(StepFailure):
        ShellExecutor(tmp_path).run(Step(name="pwd", run="pwd", cwd="missing"), ctx)


def test_timeout(tmp_path, ctx):
    with pytest.raises(StepTimeout):
        ShellExecutor(tmp_path).run(Step(name="sleep", run="sleep 5"), ctx, timeout=0.2)


def test_cancellation(tmp_path, ctx):
    token = CancelToken()
    token.cancel()
    with pytest.raises(CancellationError):
        ShellExecutor(tmp_path).run(Step(name="sleep", run="sleep 5"), ctx, cancel=token)


def test_upload_artifact_action(tmp_path, ctx):
    (tmp_path / "report.html").write_bytes(b"<html/>")
    step = Step(
        name="upload",
        uses="actions/upload-artifact@v4",
        with_={"name": "zap-${{ env.IMAGE_NAME }}", "path": "report.html"},
    )
    result = ShellExecutor(tmp_path).run(step, ctx)
    assert result.status is StepStatus.SUCCESS
    assert result.artifacts == {"zap-web": b"<html/>"}


def test_upload_artifact_missing_file(tmp_path, ctx):
    step = Step(name="upload", uses="actions/upload-artifact@v4", with_={"name": "r", "path": "nope.html"})
    result = ShellExecutor(tmp_path).run(step, ctx)
    assert result.status is StepStatus.SUCCESS
    assert result.artifacts == {}

    strict = Step(
        name="upload",
        uses="actions/upload-artifact@v4",
        with_={"name": "r", "path": "nope.html", "if-no-files-found": "error"},
    )
    with pytest.raises(StepFailure):
        ShellExecutor(tmp_path).run(strict, ctx)


def test_unknown_action_fails(tmp_path, ctx):
    result = ShellExecutor(tmp_path).run(Step(name="zap", uses="zaproxy/action-baseline@v0.7.0"), ctx)
    assert result.status is StepStatus.FAILURE
    assert "zaproxy/action-baseline" in result.error


def test_registered_action(tmp_path, ctx):
    def baseline(step, context, workdir):
        return StepResult(name=step.name, status=StepStatus.SUCCESS, artifacts={"zap": b"ok"})

    actions = ActionRegistry.default()
    actions.register("zaproxy/action-baseline@v0.7.0", baseline)
    assert "zaproxy/action-baseline@v0.12.0" in actions

    result = ShellExecutor(tmp_path, actions=actions).run(Step(name="zap", uses="zaproxy/action-baseline@v0.7.0"), ctx)
    assert result.artifacts == {"zap": b"ok"}


def test_setup_node_reports_missing_toolchain(tmp_path, ctx, monkeypatch):
    monkeypatch.setattr("dagci.executor.shutil.which", lambda tool: None)
    step = Step(name="node", uses="actions/setup-node@v4", with_={"node-version": "18"})
    result = ShellExecutor(tmp_path).run(step, ctx)
    assert result.status is StepStatus.FAILURE
    assert "Install Node.js" in result.error


def test_undecodable_output_does_not_fail_the_step(tmp_path, ctx):
    result = ShellExecutor(tmp_path).run(Step(name="bytes", run="printf '\\377\\376ok'; exit 0"), ctx)
    assert result.status is StepStatus.SUCCESS
    assert result.stdout.endswith("ok")
    assert "\ufffd" in result.stdout


def test_secret_at_the_truncation_boundary_is_masked(tmp_path, ctx):
    # the secret starts a few characters before the kept tail
    run = "printf 'hunter2'; head -c 3998 /dev/zero | tr '\\0' x"
    result = ShellExecutor(tmp_path).run(Step(name="long", run=run), ctx)
    assert "r2" not in result.stdout
    assert result.stdout.endswith("x" * 3998)
