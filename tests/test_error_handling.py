from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from porcelain_git.core.errors import (
    CommandLineError,
    CommandTimeoutError,
    FailedError,
    GitArgumentError,
    InvalidRootError,
    PorcelainGitError,
    ProcessIOError,
    SignaledError,
    SpawnError,
    UnexpectedResultError,
)
from porcelain_git.core.git_runner import (
    DEFAULT_POLICY,
    DIFF_POLICY,
    FSCK_POLICY,
    ExitPolicy,
    GitCommandLine,
    GitConfig,
    RunOptions,
    binary_version,
    require_ok,
    run_command,
)
from porcelain_git.core.models import Exited, InvocationResult, Signaled, TimedOut


def _result(status, stderr: str = "") -> InvocationResult:
    return InvocationResult(command=("git", "diff"), stdout="", stderr=stderr, exit_status=status)


def test_error_types_inheritance():
    for cls in (InvalidRootError, GitArgumentError, SpawnError, CommandLineError, ProcessIOError, UnexpectedResultError):
        assert issubclass(cls, PorcelainGitError)
    assert issubclass(FailedError, CommandLineError)
    assert issubclass(SignaledError, CommandLineError)
    assert issubclass(CommandTimeoutError, SignaledError)
    assert issubclass(GitArgumentError, ValueError)


def test_command_line_error_message_names_command_status_and_stderr():
    err = FailedError(_result(Exited(128), stderr="fatal: bad revision 'nope'"))
    assert str(err) == "['git', 'diff'], status: exit 128, stderr: \"fatal: bad revision 'nope'\""


def test_errors_are_matchable():
    err = CommandTimeoutError(_result(TimedOut(after=1.5, signal_used=15)), 1.5)
    match err:
        case CommandTimeoutError(result, timeout):
            assert timeout == 1.5
            assert result.exit_code is None
        case _:
            pytest.fail("timeout error did not match")


@pytest.mark.parametrize(
    "policy, code, ok",
    [
        (DEFAULT_POLICY, 0, True),
        (DEFAULT_POLICY, 1, False),
        (DIFF_POLICY, 1, True),
        (DIFF_POLICY, 2, False),
        (DIFF_POLICY, 128, False),
        (FSCK_POLICY, 1, True),
        (FSCK_POLICY, 2, False),
        (ExitPolicy(allowed=(0, 3)), 3, True),
    ],
)
def test_exit_policy(policy, code, ok):
    result = _result(Exited(code))
    if ok:
        assert require_ok(result, policy) is result
    else:
        with pytest.raises(FailedError) as ei:
            require_ok(result, policy)
        assert ei.value.result is result


def test_exit_policy_rejects_signaled_results():
    with pytest.raises(FailedError):
        DEFAULT_POLICY.check(_result(Signaled(9)))


def test_git_runner_with_nonexistent_repo(tmp_path: Path):
    with pytest.raises(InvalidRootError):
        GitCommandLine(tmp_path / "nope")


def test_git_runner_with_file_instead_of_repo(tmp_path: Path):
    f = tmp_path / "file.txt"
    f.write_text("x", encoding="utf-8")
    with pytest.raises(InvalidRootError):
        GitCommandLine(f)


def test_git_binary_not_found_raises_spawn_error(tmp_path: Path):
    runner = GitCommandLine(tmp_path)

    with patch("subprocess.Popen", side_effect=FileNotFoundError("git not found")):
        with pytest.raises(SpawnError) as ei:
            runner.run("status")
    assert isinstance(ei.value.__cause__, FileNotFoundError)


def test_missing_binary_path_raises_spawn_error(tmp_path: Path):
    with pytest.raises(SpawnError, match="not found"):
        run_command(str(tmp_path / "no-such-git"), ["status"])


def test_permission_error_raises_spawn_error(tmp_path: Path):
    with patch("subprocess.Popen", side_effect=PermissionError("denied")):
        with pytest.raises(SpawnError, match="PermissionError"):
            run_command("git", ["status"])


@pytest.mark.parametrize("args", [["log", ["-n", "1"]], ["log", 5], ["log", None]])
def test_non_string_args_rejected_before_spawn(tmp_path: Path, args):
    with patch("subprocess.Popen") as popen:
        with pytest.raises(GitArgumentError):
            GitCommandLine(tmp_path).run(*args)
    popen.assert_not_called()


@pytest.mark.parametrize("value", [-1, -0.5, True, "10", [1]])
def test_invalid_timeouts_rejected(value):
    with pytest.raises(GitArgumentError):
        RunOptions(timeout=value)


def test_invalid_config_rejected():
    with pytest.raises(GitArgumentError):
        GitConfig(timeout_s=-1)
    with pytest.raises(GitArgumentError):
        GitConfig(kill_grace_s="2")


def test_config_from_env():
    cfg = GitConfig.from_env(
        {"PORCELAIN_GIT_BINARY": "/opt/git/bin/git", "PORCELAIN_GIT_TIMEOUT": "2.5", "PORCELAIN_GIT_SSH": "ssh -v"}
    )
    assert cfg == GitConfig(binary_path="/opt/git/bin/git", ssh_command="ssh -v", timeout_s=2.5)
    assert GitConfig.from_env({}) == GitConfig()


def test_config_from_env_rejects_bad_timeout():
    with pytest.raises(GitArgumentError, match="PORCELAIN_GIT_TIMEOUT"):
        GitConfig.from_env({"PORCELAIN_GIT_TIMEOUT": "soon"})


def test_set_default_config_returns_previous(restore_default_config):
    from porcelain_git.core.git_runner import default_config, set_default_config

    before = default_config()
    new = GitConfig(binary_path="git-test")
    assert set_default_config(new) is before
    assert default_config() is new


@pytest.mark.parametrize(
    "output, expected",
    [
        ("git version 2.39.2", (2, 39, 2)),
        ("git version 2.42.0.windows.2", (2, 42, 0)),
        ("git version 2.30", (2, 30)),
    ],
)
def test_binary_version(monkeypatch, output, expected):
    import porcelain_git.core.git_runner as gr

    def fake_run(binary, args, **kwargs):
        return InvocationResult(command=(binary, *args), stdout=output, stderr="", exit_status=Exited(0))

    monkeypatch.setattr(gr, "run_command", fake_run)
    binary_version.cache_clear()
    try:
        assert binary_version("git-under-test") == expected
        runner = GitCommandLine(config=GitConfig(binary_path="git-under-test"))
        assert runner.meets_required_version((2, 0))
        assert not runner.meets_required_version((99,))
    finally:
        binary_version.cache_clear()


def test_binary_version_rejects_garbage(monkeypatch):
    import porcelain_git.core.git_runner as gr

    monkeypatch.setattr(
        gr,
        "run_command",
        lambda binary, args, **kw: InvocationResult((binary,), "not git", "", Exited(0)),
    )
    binary_version.cache_clear()
    try:
        with pytest.raises(UnexpectedResultError):
            binary_version("git-under-test")
    finally:
        binary_version.cache_clear()


def test_unexpected_result_error_keeps_context():
    err = UnexpectedResultError("Unexpected diff output line", line="garbage", index=3, output="a\nb\nc\ngarbage")
    assert err.line == "garbage"
    assert err.index == 3
    assert "garbage" in err.output
    assert "at line 3" in str(err)


def test_real_git_failure_surfaces_stderr(tmp_git_repo: Path):
    runner = GitCommandLine(tmp_git_repo)
    with pytest.raises(FailedError) as ei:
        runner.run("show", "nonexistent_commit_hash_12345", policy=DEFAULT_POLICY)
    assert ei.value.result.exit_code not in (0, None)
    assert "fatal" in ei.value.result.stderr.lower() or "error" in ei.value.result.stderr.lower()
