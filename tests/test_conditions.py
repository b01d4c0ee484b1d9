import pytest

from dagci.conditions import compile_expression, evaluate, interpolate, resolve
from dagci.context import Context
from dagci.errors import ConditionError


@pytest.fixture
def ctx():
    return Context.create(
        event="push",
        branch="master",
        sha="abc123",
        run_id="r1",
        env={"IMAGE_NAME": "web", "IMAGE_TAG": "1.2"},
        secrets={"DOCKER_TOKEN": "s3cr3t"},
    )


def test_unset_condition_means_success(ctx):
    assert evaluate(None, ctx) is True
    failed = ctx.for_job("push-image", {"build": "failure"})
    assert evaluate(None, failed) is False


def test_branch_comparison(ctx):
    assert evaluate("github.ref == 'refs/heads/master'", ctx)
    assert evaluate("github.ref_name == 'master'", ctx)
    assert evaluate("branch == 'MASTER'", ctx)
    assert not evaluate("github.ref == 'refs/heads/develop'", ctx)


def test_wrapped_expression(ctx):
    assert evaluate("${{ github.event_name == 'push' }}", ctx)


def test_boolean_operators_and_grouping(ctx):
    assert evaluate("github.event_name == 'push' && (branch == 'dev' || branch == 'master')", ctx)
    assert not evaluate("!(branch == 'master')", ctx)
    assert evaluate("branch != 'dev'", ctx)


def test_implicit_success_guard_applies_without_status_functions(ctx):
    job_ctx = ctx.for_job("push-image", {"build-test": "failure"})
    assert not evaluate("github.ref == 'refs/heads/master'", job_ctx)


def test_always_overrides_upstream_failure(ctx):
    job_ctx = ctx.for_job("report", {"build-test": "failure"})
    assert evaluate("always()", job_ctx)
    assert evaluate("failure()", job_ctx)
    assert not evaluate("success()", job_ctx)


def test_cancelled_function(ctx):
    job_ctx = ctx.for_job("cleanup", {"a": "success"}, cancelled=True)
    assert evaluate("cancelled()", job_ctx)
    assert not evaluate("success()", job_ctx)


def test_needs_result_lookup(ctx):
    job_ctx = ctx.for_job("deploy", {"build": "success", "lint": "skipped"})
    assert evaluate("needs.build.result == 'success'", job_ctx)
    assert evaluate("always() && needs.lint.result == 'skipped'", job_ctx)


def test_env_and_secret_lookup(ctx):
    assert evaluate("env.IMAGE_NAME == 'web'", ctx)
    assert evaluate("secrets.DOCKER_TOKEN != ''", ctx)
    assert not evaluate("secrets.MISSING != ''", ctx)


def test_unknown_paths_resolve_to_null(ctx):
    assert resolve("github.nope", ctx) is None
    assert evaluate("env.UNSET == null", ctx)


def test_literals(ctx):
    assert evaluate("true", ctx)
    assert not evaluate("false", ctx)
    assert evaluate("1 == 1.0", ctx)
    assert evaluate("'it''s' == \"it's\"", ctx)


def test_double_quoted_literals_keep_non_ascii_text(ctx):
    assert evaluate("\"caf\u00e9\" == 'caf\u00e9'", ctx)
    assert evaluate("\"a\\tb\" == 'a\tb'", ctx)
    assert evaluate("\"say \\\"hi\\\"\" == 'say \"hi\"'", ctx)


@pytest.mark.parametrize(
    "expression",
    ["", "github.ref ==", "success(", "(branch == 'master'", "nope()", "branch === 'x'", "a && && b"],
)
def test_malformed_expressions_raise(expression):
    with pytest.raises(ConditionError):
        compile_expression(expression)


def test_condition_error_reports_position():
    with pytest.raises(ConditionError) as excinfo:
        compile_expression("branch == 'master' ||")
    assert excinfo.value.details["position"] == len("branch == 'master' ||")


def test_interpolate(ctx):
    text = "docker build -t ${{ env.IMAGE_NAME }}:${{ env.IMAGE_TAG }} ."
    assert interpolate(text, ctx) == "docker build -t web:1.2 ."
    assert interpolate("echo ${{ env.UNSET }}!", ctx) == "echo !"
    assert interpolate("plain text", ctx) == "plain text"


def test_evaluation_is_pure(ctx):
    compiled = compile_expression("env.IMAGE_NAME == 'web'")
    other = ctx.with_env({"IMAGE_NAME": "api"})
    assert compiled(ctx) is True
    assert compiled(other) is False
    assert compiled(ctx) is True
