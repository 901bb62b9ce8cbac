"""Cancellable, deadline-bound helper invocations and a bounded-retry combinator.

One :class:`HelperInvocation` describes a single attempt to run an auth
helper. :func:`run_helper_once` executes it as one unit of work: spawn,
read stdout, wait for exit, all bounded by the attempt timeout and by the
request's :class:`~devcontainer_credprovider.credentials.base.Cancellation`.
If either fires first, the helper's whole process group is killed and
reaped before returning, so no helper (or helper child) outlives its attempt.

:func:`retry_attempts` composes attempts with a fixed backoff. The backoff is
abandoned as soon as the request is cancelled.
"""

from __future__ import annotations

import asyncio
import enum
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from devcontainer_credprovider.credentials.base import Cancellation
from devcontainer_credprovider.output import debug

HELPER_ARGUMENT = "get-access-token"
MAX_ATTEMPTS = 3
ATTEMPT_TIMEOUT_SECONDS = 10.0
BACKOFF_SECONDS = 2.0

T = TypeVar("T")


@dataclass(frozen=True)
class HelperInvocation:
    """Parameters of one attempt to run one auth helper.

    Created per candidate path per request and discarded afterwards.
    """

    executable_path: Path
    attempt_index: int = 1
    max_attempts: int = MAX_ATTEMPTS
    attempt_timeout: float = ATTEMPT_TIMEOUT_SECONDS
    backoff: float = BACKOFF_SECONDS

    @property
    def has_attempts_left(self) -> bool:
        return self.attempt_index < self.max_attempts

    def next_attempt(self) -> HelperInvocation:
        return HelperInvocation(
            executable_path=self.executable_path,
            attempt_index=self.attempt_index + 1,
            max_attempts=self.max_attempts,
            attempt_timeout=self.attempt_timeout,
            backoff=self.backoff,
        )


class AttemptStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    LAUNCH_FAILED = "launch_failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one attempt. ``token`` is only set when ``SUCCEEDED``."""

    status: AttemptStatus
    token: Optional[str] = None
    reason: str = ""

    @property
    def retryable(self) -> bool:
        return self.status in (AttemptStatus.FAILED, AttemptStatus.TIMED_OUT)

    def __repr__(self) -> str:
        return f"AttemptOutcome({self.status.value}, reason={self.reason!r})"


class _Interrupted(Exception):
    def __init__(self, status: AttemptStatus):
        super().__init__(status.value)
        self.status = status


async def _bounded(
    awaitable: Awaitable[T], cancelled: Cancellation, timeout: Optional[float]
) -> T:
    """Await *awaitable* unless *timeout* elapses or *cancelled* fires first.

    Raises:
        _Interrupted: With ``TIMED_OUT`` or ``CANCELLED``; the inner task has
            been cancelled by then.
    """
    work = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(cancelled.wait())
    try:
        done, _ = await asyncio.wait(
            {work, watcher}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        # Settle the work first; the caller drains the same stream afterwards.
        work.cancel()
        await asyncio.wait({work})
        raise
    finally:
        watcher.cancel()

    if work in done:
        return work.result()

    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        pass
    if cancelled.is_cancelled:
        raise _Interrupted(AttemptStatus.CANCELLED)
    raise _Interrupted(AttemptStatus.TIMED_OUT)


def _new_session_kwargs() -> dict[str, object]:
    # POSIX: own process group so the whole helper tree can be killed.
    if sys.platform == "win32":
        return {}
    return {"start_new_session": True}


async def _kill_process_tree(proc: asyncio.subprocess.Process) -> None:
    """Kill *proc* and every process in its group, then reap it.

    On POSIX the group is killed even when *proc* itself has already exited:
    background children of the helper may still be holding stdout open.
    """
    try:
        if sys.platform == "win32":
            if proc.returncode is None:
                proc.kill()
        else:
            os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass

    async def _reap() -> None:
        # Drain to EOF so the pipe transport is closed with the process.
        if proc.stdout is not None:
            await proc.stdout.read()
        await proc.wait()

    try:
        await asyncio.wait_for(_reap(), timeout=5.0)
    except asyncio.TimeoutError:
        debug(f"Helper process {proc.pid} did not exit after SIGKILL")


def accept_token(returncode: Optional[int], stdout: bytes) -> Optional[str]:
    """Return the trimmed token if the helper output is acceptable.

    Accepted only when the exit code is 0, the trimmed output is non-empty
    and it does not start with ``Error`` (any case).
    """
    if returncode != 0:
        return None
    token = stdout.decode("utf-8", errors="replace").strip()
    if not token or token.lower().startswith("error"):
        return None
    return token


async def run_helper_once(
    invocation: HelperInvocation, cancelled: Cancellation
) -> AttemptOutcome:
    """Run one helper attempt as a single cancellable, deadline-bound unit.

    Args:
        invocation: Which helper to run and with what timeout.
        cancelled: Request cancellation signal.

    Returns:
        The :class:`AttemptOutcome`. Never raises for helper failures.
    """
    if cancelled.is_cancelled:
        return AttemptOutcome(AttemptStatus.CANCELLED)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + invocation.attempt_timeout

    def remaining() -> float:
        return max(0.0, deadline - loop.time())

    proc: Optional[asyncio.subprocess.Process] = None
    try:
        proc = await _bounded(
            asyncio.create_subprocess_exec(
                str(invocation.executable_path),
                HELPER_ARGUMENT,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                **_new_session_kwargs(),
            ),
            cancelled,
            remaining(),
        )
        if proc.stdout is None:
            await _kill_process_tree(proc)
            return AttemptOutcome(AttemptStatus.LAUNCH_FAILED, reason="stdout not captured")
        stdout = await _bounded(proc.stdout.read(), cancelled, remaining())
        returncode = await _bounded(proc.wait(), cancelled, remaining())
    except _Interrupted as exc:
        if proc is not None:
            await _kill_process_tree(proc)
        return AttemptOutcome(exc.status)
    except OSError as exc:
        return AttemptOutcome(AttemptStatus.LAUNCH_FAILED, reason=str(exc))
    except asyncio.CancelledError:
        if proc is not None:
            await _kill_process_tree(proc)
        raise

    token = accept_token(returncode, stdout)
    if token is None:
        return AttemptOutcome(
            AttemptStatus.FAILED, reason=f"exit code {returncode}, no usable token"
        )
    return AttemptOutcome(AttemptStatus.SUCCEEDED, token=token)


async def wait_backoff(delay: float, cancelled: Cancellation) -> bool:
    """Sleep for *delay* seconds unless cancelled first.

    Returns:
        ``True`` if the full delay elapsed, ``False`` if cancelled.
    """
    try:
        await asyncio.wait_for(cancelled.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return True
    return False


async def retry_attempts(
    first: HelperInvocation,
    attempt: Callable[[HelperInvocation, Cancellation], Awaitable[AttemptOutcome]],
    cancelled: Cancellation,
    on_retry: Optional[Callable[[HelperInvocation, AttemptOutcome], None]] = None,
) -> AttemptOutcome:
    """Run *attempt* up to ``first.max_attempts`` times with a fixed backoff.

    Stops at the first success, at a non-retryable outcome (launch failure,
    cancellation) or when attempts are exhausted. No backoff follows the
    final attempt.

    Args:
        first: The first invocation; later ones come from ``next_attempt()``.
        attempt: Runs one invocation.
        cancelled: Request cancellation signal.
        on_retry: Called before each backoff with the failed invocation and
            its outcome.

    Returns:
        The last :class:`AttemptOutcome`.
    """
    invocation = first
    while True:
        outcome = await attempt(invocation, cancelled)
        if not outcome.retryable or not invocation.has_attempts_left:
            return outcome
        if on_retry is not None:
            on_retry(invocation, outcome)
        if not await wait_backoff(invocation.backoff, cancelled):
            return AttemptOutcome(AttemptStatus.CANCELLED)
        invocation = invocation.next_attempt()
