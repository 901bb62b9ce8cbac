"""Token acquisition by running an auth helper executable.

The devcontainer's auth helper (``ado-auth-helper`` or ``azure-auth-helper``)
prints an Azure DevOps access token when invoked as
``<helper> get-access-token``. :class:`HelperProcessSource` probes the
candidate paths in order and runs each existing one with the bounded retry
policy from :mod:`~devcontainer_credprovider.credentials.process`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

from devcontainer_credprovider.config import default_helper_paths
from devcontainer_credprovider.credentials.base import (
    Cancellation,
    CredentialQuery,
    CredentialResult,
    CredentialSource,
)
from devcontainer_credprovider.credentials.process import (
    ATTEMPT_TIMEOUT_SECONDS,
    BACKOFF_SECONDS,
    MAX_ATTEMPTS,
    AttemptOutcome,
    AttemptStatus,
    HelperInvocation,
    retry_attempts,
    run_helper_once,
)
from devcontainer_credprovider.output import log

CANCELLED_MESSAGE = "Credential request cancelled"


class HelperProcessSource(CredentialSource):
    """Run the first auth helper that yields a usable token.

    Args:
        paths: Candidate executables, in priority order. Defaults to
            :func:`~devcontainer_credprovider.config.default_helper_paths`,
            resolved once at construction.
        max_attempts: Attempts per existing candidate.
        attempt_timeout: Seconds allowed for each attempt.
        backoff: Seconds between attempts on the same candidate.
    """

    def __init__(
        self,
        paths: Optional[Sequence[Path]] = None,
        max_attempts: int = MAX_ATTEMPTS,
        attempt_timeout: float = ATTEMPT_TIMEOUT_SECONDS,
        backoff: float = BACKOFF_SECONDS,
    ) -> None:
        self._paths = tuple(paths) if paths is not None else tuple(default_helper_paths())
        self._max_attempts = max_attempts
        self._attempt_timeout = attempt_timeout
        self._backoff = backoff

    @property
    def name(self) -> str:
        return "auth-helper"

    @property
    def paths(self) -> tuple[Path, ...]:
        return self._paths

    def invocation_for(self, path: Path) -> HelperInvocation:
        """First attempt of *path* under this source's retry policy."""
        return HelperInvocation(
            executable_path=path,
            max_attempts=self._max_attempts,
            attempt_timeout=self._attempt_timeout,
            backoff=self._backoff,
        )

    async def acquire(
        self, query: CredentialQuery, cancelled: Cancellation
    ) -> Optional[CredentialResult]:
        for path in self._paths:
            if cancelled.is_cancelled:
                return CredentialResult.not_applicable(CANCELLED_MESSAGE)
            if not path.is_file():
                continue

            log(f"Found auth helper at: {path}")
            outcome = await retry_attempts(
                self.invocation_for(path),
                run_helper_once,
                cancelled,
                on_retry=_log_retry,
            )

            if outcome.status is AttemptStatus.SUCCEEDED and outcome.token:
                log(f"Got access token (length: {len(outcome.token)})")
                return CredentialResult.success(outcome.token)
            if outcome.status is AttemptStatus.CANCELLED:
                log("Credential request cancelled")
                return CredentialResult.not_applicable(CANCELLED_MESSAGE)
            if outcome.status is AttemptStatus.LAUNCH_FAILED:
                log(f"Could not start auth helper {path}: {outcome.reason}", always=True)
            else:
                log(f"Auth helper {path} gave no token after {self._max_attempts} attempts")

        log("No auth helper produced a token")
        return None


def _log_retry(invocation: HelperInvocation, outcome: AttemptOutcome) -> None:
    if outcome.status is AttemptStatus.TIMED_OUT:
        log(
            f"Auth helper timed out after {invocation.attempt_timeout:g}s "
            f"(attempt {invocation.attempt_index}/{invocation.max_attempts})",
            always=True,
        )
    else:
        log(
            f"Auth helper attempt {invocation.attempt_index}/{invocation.max_attempts} "
            f"failed: {outcome.reason}"
        )
    log(f"Retrying in {invocation.backoff:g}s...")
