"""
Docker-backed judge for reference solutions.

Every call gets a fresh temp directory mounted read-only into a network-less
container, and the directory is removed before returning.
"""

import asyncio
import contextlib
import logging
import os
import re
import shutil
import tempfile
import time
from dataclasses import dataclass, field

from codecraft.core.config import Settings
from codecraft.core.errors import SandboxError
from codecraft.models.language import get_profile

logger = logging.getLogger("codecraft.sandbox")

MAX_OUTPUT_BYTES = 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024
# a child still writing past this multiple of the cap is killed
OVERFLOW_KILL_FACTOR = 4
MAX_FILENAME_LENGTH = 256
# docker run exits 125 when the daemon itself fails
DOCKER_INFRA_EXIT = 125

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
_PYTEST_FAIL_RE = re.compile(r"\b(FAILED|ERROR)\s+[^:\s]+::(test_[A-Za-z0-9_]+)\b")
_PYTEST_NAME_RE = re.compile(r"^\s*def\s+(test_[A-Za-z0-9_]+)\s*\(", re.MULTILINE)
_JUNIT_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\(\)\s+\[(OK|X)\]")
_PASS_FAIL_RE = re.compile(r"\[(PASS|FAIL)\]\s+(test_[A-Za-z0-9_]+)")


@dataclass
class JudgeResult:
    success: bool
    passed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    exit_code: int | None = None
    execution_ms: int = 0


@dataclass
class ProcessResult:
    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool
    output_overflow: bool = False


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def _unique(names) -> list[str]:
    return list(dict.fromkeys(names))


def parse_pytest_failures(output: str) -> list[str]:
    return _unique(name for _, name in _PYTEST_FAIL_RE.findall(strip_ansi(output)))


def infer_pytest_names(test_suite: str) -> list[str]:
    return _unique(_PYTEST_NAME_RE.findall(test_suite))


def parse_junit_tree(stdout: str) -> tuple[list[str], list[str]]:
    passed, failed = [], []
    for name, status in _JUNIT_RE.findall(strip_ansi(stdout)):
        (passed if status == "OK" else failed).append(name)
    return _unique(passed), _unique(failed)


def parse_pass_fail(stdout: str) -> tuple[list[str], list[str]]:
    passed, failed = [], []
    for status, name in _PASS_FAIL_RE.findall(strip_ansi(stdout)):
        (passed if status == "PASS" else failed).append(name)
    return _unique(passed), _unique(failed)


def write_user_files(root: str, files: dict[str, str]) -> None:
    """Write files under root, refusing anything that would escape it."""
    root = os.path.realpath(root)
    for filename, source in files.items():
        if not isinstance(filename, str) or not filename.strip():
            raise ValueError("Invalid filename.")
        if len(filename) > MAX_FILENAME_LENGTH:
            raise ValueError("Filename is too long.")
        if "\0" in filename:
            raise ValueError("Invalid filename.")
        if os.path.isabs(filename):
            raise ValueError("Absolute paths are not allowed.")
        out_path = os.path.realpath(os.path.join(root, filename))
        if out_path != root and not out_path.startswith(root + os.sep):
            raise ValueError(f"Invalid filename (path traversal): {filename}")
        os.makedirs(os.path.dirname(out_path), exist_ok=True)
        with open(out_path, "w", encoding="utf-8") as f:
            f.write(source or "")


def _decode(data: bytes) -> str:
    return strip_ansi(bytes(data[:MAX_OUTPUT_BYTES]).decode("utf-8", errors="replace"))


def _kill(proc) -> None:
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()


async def _drain(stream, kept: bytearray, proc, overflow: list[bool]) -> None:
    """Read a pipe to EOF, keeping at most MAX_OUTPUT_BYTES of it."""
    total = 0
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return
        total += len(chunk)
        room = MAX_OUTPUT_BYTES - len(kept)
        if room > 0:
            kept += chunk[:room]
        if total > MAX_OUTPUT_BYTES * OVERFLOW_KILL_FACTOR and not overflow:
            overflow.append(True)
            _kill(proc)


async def run_process(cmd: list[str], cwd: str, timeout: float) -> ProcessResult:
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise SandboxError(f"could not start {cmd[0]}: {e}") from e

    out, err = bytearray(), bytearray()
    overflow: list[bool] = []
    timed_out = False
    try:
        await asyncio.wait_for(
            asyncio.gather(
                _drain(proc.stdout, out, proc, overflow),
                _drain(proc.stderr, err, proc, overflow),
                proc.wait(),
            ),
            timeout,
        )
    except asyncio.TimeoutError:
        timed_out = True
        _kill(proc)
        await proc.wait()

    if overflow:
        logger.warning("[sandbox] %s killed: output exceeded %d bytes", cmd[0],
                       MAX_OUTPUT_BYTES * OVERFLOW_KILL_FACTOR)
    exit_code = proc.returncode if proc.returncode is not None else 1
    return ProcessResult(_decode(out), _decode(err), exit_code, timed_out, output_overflow=bool(overflow))


class SandboxExecutor:
    async def judge(self, language: str, files: dict[str, str], test_suite: str) -> JudgeResult:
        raise NotImplementedError


class DockerSandboxExecutor(SandboxExecutor):
    def __init__(self, settings: Settings):
        self.docker_path = settings.docker_path or "docker"
        self.timeout = settings.judge_timeout_seconds

    def _docker_args(self, language: str, workdir: str) -> list[str]:
        args = ["run", "--rm", "--network", "none", "--read-only", "--tmpfs", "/tmp:rw"]
        if language == "python":
            args += [
                "-e", "PYTHONDONTWRITEBYTECODE=1",
                "-e", "PYTHONHASHSEED=0",
                "-e", "PYTHONUNBUFFERED=1",
                "-e", "PYTEST_DISABLE_PLUGIN_AUTOLOAD=1",
            ]
        args += ["-v", f"{workdir}:/workspace:ro", "--workdir", "/workspace", get_profile(language).judge_image]
        return args

    async def judge(self, language: str, files: dict[str, str], test_suite: str) -> JudgeResult:
        profile = get_profile(language)
        start = time.monotonic()
        tmp = tempfile.mkdtemp(prefix="codecraft-judge-")
        try:
            try:
                write_user_files(tmp, files)
            except ValueError as e:
                return JudgeResult(success=False, stderr=str(e))

            solution_name = next(iter(files), profile.solution_filename)
            test_name = profile.test_name_for(test_suite, solution_name)
            if test_name in files:
                return JudgeResult(
                    success=False,
                    stderr=f'User files include "{test_name}", which conflicts with the test suite filename.',
                )
            write_user_files(tmp, {test_name: test_suite})

            proc = await run_process(
                [self.docker_path, *self._docker_args(language, tmp)], tmp, self.timeout
            )
        finally:
            shutil.rmtree(tmp, ignore_errors=True)

        elapsed = int((time.monotonic() - start) * 1000)
        logger.info(
            "[sandbox] %s exit=%s timed_out=%s stdout=%d stderr=%d ms=%d",
            language, proc.exit_code, proc.timed_out, len(proc.stdout), len(proc.stderr), elapsed,
        )
        if proc.exit_code == DOCKER_INFRA_EXIT and not proc.timed_out:
            raise SandboxError(f"docker failed: {proc.stderr.strip()[:200]}")

        if language == "python":
            failed = parse_pytest_failures(proc.stdout + "\n" + proc.stderr)
            passed = [n for n in infer_pytest_names(test_suite) if n not in failed]
            if proc.exit_code != 0 and not failed:
                passed = []
        elif language == "java":
            passed, failed = parse_junit_tree(proc.stdout)
        else:
            passed, failed = parse_pass_fail(proc.stdout)

        return JudgeResult(
            success=proc.exit_code == 0 and not proc.timed_out and not proc.output_overflow and not failed,
            passed=passed,
            failed=failed,
            stdout=proc.stdout,
            stderr=proc.stderr,
            timed_out=proc.timed_out,
            exit_code=proc.exit_code,
            execution_ms=elapsed,
        )
