from __future__ import annotations

import functools
import logging
import os
import re
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import IO, Iterable, Mapping, Protocol, Union

from .errors import (
    CommandTimeoutError,
    FailedError,
    GitArgumentError,
    ProcessIOError,
    SignaledError,
    SpawnError,
    UnexpectedResultError,
)
from .models import Exited, ExitStatus, InvocationResult, Signaled, TimedOut
from .security import resolve_root

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_POLL_INTERVAL_S = 0.02

_SIGTERM = int(getattr(signal, "SIGTERM", 15))
_SIGKILL = int(getattr(signal, "SIGKILL", 9))

# Environment that keeps git non-interactive.
CONTROLLED_ENV: dict[str, str] = {
    "GIT_TERMINAL_PROMPT": "0",
    "GCM_INTERACTIVE": "Never",
    "GIT_PAGER": "cat",
    "GIT_OPTIONAL_LOCKS": "0",
}

STATIC_GLOBAL_OPTS: tuple[str, ...] = (
    "-c", "core.quotePath=true",
    "-c", "color.ui=false",
    "-c", "color.advice=false",
    "-c", "color.diff=false",
    "-c", "color.grep=false",
    "-c", "color.push=false",
    "-c", "color.remote=false",
    "-c", "color.showBranch=false",
    "-c", "color.status=false",
    "-c", "color.transport=false",
)


class OutputSink(Protocol):
    """
    Receives output bytes as git produces them.

    Any exception raised by write() aborts the invocation with ProcessIOError.
    """

    def write(self, data: bytes) -> object: ...


Timeout = Union[int, float, None]


def _validate_timeout(value: object, name: str = "timeout") -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise GitArgumentError(f"{name} must be a number of seconds or None, got {value!r}")
    if value < 0:
        raise GitArgumentError(f"{name} must not be negative, got {value!r}")
    return float(value)


@dataclass(frozen=True)
class GitConfig:
    """
    Process-wide git settings.

    binary_path: git executable, "git" resolves through PATH
    ssh_command: exported as GIT_SSH_COMMAND when set
    timeout_s: default deadline when a call gives none; None or 0 disables it
    kill_grace_s: wait between SIGTERM and SIGKILL when a deadline expires
    """
    binary_path: str = "git"
    ssh_command: str | None = None
    timeout_s: float | None = None
    kill_grace_s: float = 2.0

    def __post_init__(self) -> None:
        _validate_timeout(self.timeout_s, "timeout_s")
        _validate_timeout(self.kill_grace_s, "kill_grace_s")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GitConfig:
        env = os.environ if environ is None else environ
        timeout_s: float | None = None
        raw_timeout = (env.get("PORCELAIN_GIT_TIMEOUT") or "").strip()
        if raw_timeout:
            try:
                timeout_s = float(raw_timeout)
            except ValueError as e:
                raise GitArgumentError(f"PORCELAIN_GIT_TIMEOUT is not a number: {raw_timeout!r}") from e
        return cls(
            binary_path=env.get("PORCELAIN_GIT_BINARY") or "git",
            ssh_command=env.get("PORCELAIN_GIT_SSH") or None,
            timeout_s=timeout_s,
        )


_default_config = GitConfig.from_env()
_config_lock = threading.Lock()


def default_config() -> GitConfig:
    with _config_lock:
        return _default_config


def set_default_config(config: GitConfig) -> GitConfig:
    """
    Replace the process-wide default and return the previous one.
    Invocations already running keep the value they started with.
    """
    global _default_config
    with _config_lock:
        previous, _default_config = _default_config, config
    return previous


@dataclass(frozen=True)
class RunOptions:
    """
    Per-invocation options.

    stdin: text or bytes written to git's stdin, None connects /dev/null
    out_sink / err_sink: OutputSink receiving bytes as they are produced
    merge_streams: send stderr into stdout (result.stderr is then empty)
    timeout: seconds from spawn; None uses GitConfig.timeout_s, 0 disables it
    chomp: strip one trailing line terminator from captured text
    normalize_encoding: decode captured bytes with `encoding` instead of UTF-8
    cwd: working directory for the process
    """
    stdin: str | bytes | None = None
    out_sink: OutputSink | None = None
    err_sink: OutputSink | None = None
    merge_streams: bool = False
    timeout: Timeout = None
    chomp: bool = False
    normalize_encoding: bool = False
    encoding: str = "utf-8"
    cwd: str | Path | None = None

    def __post_init__(self) -> None:
        _validate_timeout(self.timeout)


@dataclass(frozen=True)
class ExitPolicy:
    """Exit codes a command treats as success."""
    allowed: tuple[int, ...] = (0,)

    def check(self, result: InvocationResult) -> InvocationResult:
        if result.exit_code not in self.allowed:
            raise FailedError(result)
        return result


DEFAULT_POLICY = ExitPolicy()
# diff and fsck use exit code 1 for "differences / issues found".
DIFF_POLICY = ExitPolicy(allowed=(0, 1))
FSCK_POLICY = ExitPolicy(allowed=(0, 1))


def require_ok(result: InvocationResult, policy: ExitPolicy = DEFAULT_POLICY) -> InvocationResult:
    return policy.check(result)


def _kill_process_tree_windows(pid: int) -> None:
    """
    Kill a process tree on Windows (git may spawn helper processes such as
    credential managers, ssh, pagers, etc.).
    """
    subprocess.run(
        ["taskkill", "/PID", str(pid), "/T", "/F"],
        capture_output=True,
        text=True,
    )


def _signal_process_group_posix(p: subprocess.Popen, sig: int) -> None:
    """
    Signal the whole process group (start_new_session=True).
    Falls back to signalling the child alone.
    """
    try:
        os.killpg(p.pid, sig)
    except ProcessLookupError:
        pass
    except OSError:
        try:
            p.send_signal(sig)
        except ProcessLookupError:
            pass


def _kill_tree(p: subprocess.Popen) -> None:
    if os.name == "nt":
        _kill_process_tree_windows(p.pid)
    else:
        _signal_process_group_posix(p, _SIGKILL)


def build_env(overrides: Mapping[str, str | None] | None = None) -> dict[str, str]:
    """
    Child environment: os.environ + CONTROLLED_ENV + overrides.
    A key mapped to None is removed rather than set to "".
    """
    merged_env = dict(os.environ)
    merged_env.update(CONTROLLED_ENV)
    for key, value in (overrides or {}).items():
        if value is None:
            merged_env.pop(key, None)
        else:
            merged_env[key] = str(value)
    return merged_env


def _build_argv(binary: str, global_opts: Iterable[str], args: Iterable[object]) -> list[str]:
    argv = [str(binary)]
    for a in [*global_opts, *args]:
        if isinstance(a, (list, tuple, set, dict)):
            raise GitArgumentError(f"git arguments must be flat strings, got {a!r}")
        if not isinstance(a, (str, os.PathLike)):
            raise GitArgumentError(f"git arguments must be str or path-like, got {type(a).__name__}: {a!r}")
        argv.append(os.fspath(a))
    return argv


def _post_process(data: bytes, options: RunOptions) -> str:
    encoding = options.encoding if options.normalize_encoding else "utf-8"
    text = data.decode(encoding, errors="replace")
    if options.chomp:
        if text.endswith("\r\n"):
            text = text[:-2]
        elif text.endswith("\n"):
            text = text[:-1]
    return text


class _Pump(threading.Thread):
    """Copies one pipe into its own buffer and optional sink."""

    def __init__(self, name: str, pipe: IO[bytes], sink: OutputSink | None, failed: threading.Event) -> None:
        super().__init__(name=f"git-{name}-pump", daemon=True)
        self.stream = name
        self.pipe = pipe
        self.sink = sink
        self.failed = failed
        self.buffer = bytearray()
        self.lock = threading.Lock()
        self.error: BaseException | None = None

    def snapshot(self) -> bytes:
        """Bytes read so far; safe while the thread is still running."""
        with self.lock:
            return bytes(self.buffer)

    def run(self) -> None:
        try:
            while True:
                chunk = self.pipe.read1(_CHUNK_SIZE)
                if not chunk:
                    break
                with self.lock:
                    self.buffer += chunk
                if self.sink is not None:
                    self.sink.write(chunk)
        except Exception as e:
            self.error = e
            self.failed.set()
        finally:
            try:
                self.pipe.close()
            except OSError:
                pass


def _finished(p: subprocess.Popen, pumps: list[_Pump]) -> bool:
    """git exited and every output pipe reached EOF (no descendant holds them)."""
    return p.poll() is not None and not any(t.is_alive() for t in pumps)


def _terminate_with_grace(p: subprocess.Popen, grace_s: float, pumps: list[_Pump]) -> int:
    """
    SIGTERM the process group, SIGKILL it if git or a descendant holding its
    pipes is still alive after `grace_s`. The group is signalled even when
    git itself already exited. Returns the last signal sent.
    """
    if os.name == "nt":
        _kill_process_tree_windows(p.pid)
        return _SIGKILL

    _signal_process_group_posix(p, _SIGTERM)
    grace_end = time.perf_counter() + grace_s
    while time.perf_counter() < grace_end:
        if _finished(p, pumps):
            return _SIGTERM
        time.sleep(_POLL_INTERVAL_S)
    _signal_process_group_posix(p, _SIGKILL)
    return _SIGKILL


def _feed_stdin(pipe: IO[bytes], data: bytes) -> None:
    try:
        if data:
            pipe.write(data)
    except (BrokenPipeError, OSError):
        # git closed stdin early
        pass
    finally:
        try:
            pipe.close()
        except OSError:
            pass


def run_command(
    binary: str,
    args: Iterable[object],
    *,
    env_overrides: Mapping[str, str | None] | None = None,
    global_opts: Iterable[str] = (),
    options: RunOptions | None = None,
    config: GitConfig | None = None,
    log: logging.Logger | None = None,
) -> InvocationResult:
    """
    Spawn `binary`, wait for it and return an InvocationResult.

    Raises SignaledError / CommandTimeoutError when git did not exit on its own,
    ProcessIOError when a sink failed, SpawnError when git could not start.
    Exit codes are not judged here; see ExitPolicy.
    """
    options = options or RunOptions()
    config = config or default_config()
    log = log or logger

    argv = _build_argv(binary, global_opts, args)
    command = tuple(argv)
    timeout = options.timeout if options.timeout is not None else config.timeout_s
    timeout = _validate_timeout(timeout) or None
    stdin_data = options.stdin.encode(options.encoding) if isinstance(options.stdin, str) else options.stdin

    popen_kwargs: dict = {}
    if os.name != "nt":
        # own process group so a timeout can kill git's helpers too
        popen_kwargs["start_new_session"] = True

    start = time.perf_counter()
    try:
        p = subprocess.Popen(
            argv,
            cwd=str(options.cwd) if options.cwd is not None else None,
            env=build_env(env_overrides),
            stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if options.merge_streams else subprocess.PIPE,
            shell=False,
            **popen_kwargs,
        )
    except FileNotFoundError as e:
        raise SpawnError(f"git executable not found: {binary}") from e
    except OSError as e:
        raise SpawnError(f"Failed to spawn git: {type(e).__name__}: {e}") from e

    failed = threading.Event()
    pumps = [_Pump("stdout", p.stdout, options.out_sink, failed)]
    if not options.merge_streams:
        pumps.append(_Pump("stderr", p.stderr, options.err_sink, failed))
    for t in pumps:
        t.start()

    feeder = None
    if stdin_data is not None:
        feeder = threading.Thread(target=_feed_stdin, args=(p.stdin, stdin_data), name="git-stdin", daemon=True)
        feeder.start()

    deadline = start + timeout if timeout else None
    timed_out = False
    signal_used = _SIGKILL
    try:
        # A descendant can keep the pipes open after git exits, so the run
        # ends only when git has exited and both pipes reached EOF.
        while not _finished(p, pumps):
            if failed.is_set():
                _kill_tree(p)
                p.wait()
                break
            if deadline is not None and time.perf_counter() >= deadline:
                timed_out = True
                signal_used = _terminate_with_grace(p, config.kill_grace_s, pumps)
                p.wait()
                break
            if p.poll() is None:
                try:
                    p.wait(timeout=_POLL_INTERVAL_S)
                except subprocess.TimeoutExpired:
                    pass
            else:
                alive = [t for t in pumps if t.is_alive()]
                if alive:
                    alive[0].join(timeout=_POLL_INTERVAL_S)
    except BaseException:
        _kill_tree(p)
        raise

    for t in pumps:
        t.join(timeout=config.kill_grace_s)
        if t.is_alive():
            log.warning("%s: %s still open after kill, output may be partial", list(command), t.stream)
    if feeder is not None:
        feeder.join(timeout=config.kill_grace_s)

    duration_ms = int((time.perf_counter() - start) * 1000)

    status: ExitStatus
    if timed_out:
        status = TimedOut(after=timeout or 0.0, signal_used=signal_used)
    elif p.returncode is not None and p.returncode < 0:
        status = Signaled(signal=-p.returncode)
    else:
        status = Exited(code=int(p.returncode or 0))

    out_pump = pumps[0]
    err_pump = pumps[1] if len(pumps) > 1 else None
    result = InvocationResult(
        command=command,
        stdout=_post_process(out_pump.snapshot(), options),
        stderr=_post_process(err_pump.snapshot(), options) if err_pump else "",
        exit_status=status,
        duration_ms=duration_ms,
    )

    log.info("%s exited with status %s", list(command), status)
    log.debug("stdout:\n%r\nstderr:\n%r", result.stdout, result.stderr)

    for t in pumps:
        if t.error is not None:
            raise ProcessIOError(command, t.stream, result) from t.error
    if isinstance(status, TimedOut):
        raise CommandTimeoutError(result, status.after)
    if isinstance(status, Signaled):
        raise SignaledError(result)
    return result


class GitCommandLine:
    """
    Runs git for one repository.

      - No shell
      - Controlled, non-interactive environment
      - Per-instance GIT_DIR / GIT_WORK_TREE / GIT_INDEX_FILE (never globals)
      - Hard timeout that kills the whole process group
      - Process-wide GitConfig snapshotted at the start of every call
    """

    def __init__(
        self,
        root: str | Path | None = None,
        *,
        git_dir: str | Path | None = None,
        work_tree: str | Path | None = None,
        index_file: str | Path | None = None,
        config: GitConfig | None = None,
        env: Mapping[str, str | None] | None = None,
        logger: logging.Logger | None = None,
        locale: str = "C",
    ) -> None:
        self.root = resolve_root(root) if root is not None else None
        self.git_dir = str(git_dir) if git_dir is not None else None
        self.work_tree = str(work_tree) if work_tree is not None else None
        self.index_file = str(index_file) if index_file is not None else None
        self.config = config
        self.extra_env = dict(env or {})
        self.logger = logger or logging.getLogger(__name__)
        self.locale = locale

    def env_overrides(self, config: GitConfig) -> dict[str, str | None]:
        overrides: dict[str, str | None] = {"LC_ALL": self.locale}
        if self.git_dir is not None:
            overrides["GIT_DIR"] = self.git_dir
        if self.work_tree is not None:
            overrides["GIT_WORK_TREE"] = self.work_tree
        if self.index_file is not None:
            overrides["GIT_INDEX_FILE"] = self.index_file
        if config.ssh_command is not None:
            overrides["GIT_SSH_COMMAND"] = config.ssh_command
        overrides.update(self.extra_env)
        return overrides

    def global_opts(self) -> list[str]:
        opts: list[str] = []
        if self.git_dir is not None:
            opts.append(f"--git-dir={self.git_dir}")
        if self.work_tree is not None:
            opts.append(f"--work-tree={self.work_tree}")
        opts.extend(STATIC_GLOBAL_OPTS)
        return opts

    def run(
        self,
        *args: object,
        options: RunOptions | None = None,
        policy: ExitPolicy | None = None,
    ) -> InvocationResult:
        if not args:
            raise GitArgumentError("Empty git args are not allowed.")

        config = self.config or default_config()
        options = options or RunOptions()
        if options.cwd is None and self.root is not None:
            options = replace(options, cwd=self.root)

        result = run_command(
            config.binary_path,
            args,
            env_overrides=self.env_overrides(config),
            global_opts=self.global_opts(),
            options=options,
            config=config,
            log=self.logger,
        )
        if policy is not None:
            policy.check(result)
        return result

    def version(self) -> tuple[int, ...]:
        config = self.config or default_config()
        return binary_version(config.binary_path)

    def meets_required_version(self, required: tuple[int, ...]) -> bool:
        return self.version() >= tuple(required)


_VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")


@functools.lru_cache(maxsize=None)
def binary_version(binary_path: str = "git") -> tuple[int, ...]:
    """
    `git version` of `binary_path`, resolved once per binary.
    """
    result = run_command(binary_path, ["version"], options=RunOptions(chomp=True), config=GitConfig(binary_path))
    DEFAULT_POLICY.check(result)
    m = _VERSION_RE.search(result.stdout)
    if not m:
        raise UnexpectedResultError(
            "Unrecognised git version output", line=result.stdout, index=0, output=result.stdout
        )
    return tuple(int(g) for g in m.groups() if g is not None)
