"""Second-factor gate -- a TOTP check in front of token acquisition.

When two-factor authentication is enabled, no auth helper is spawned unless
the user supplied a one-time code (``NUGET_CREDPROVIDER_2FA_CODE``) that is
valid for the shared secret at the current time, allowing one 30-second step
of clock skew either way. Every failure is closed: the gate answers
``NotApplicable`` and the pipeline stops.

Codes are standard RFC 6238 values (SHA-1, 6 digits, 30 s step) computed
with :mod:`pyotp`, so any authenticator app works.
"""

from __future__ import annotations

import binascii
import time
from typing import Callable, Optional

import pyotp
from pyotp.utils import strings_equal

from devcontainer_credprovider.credentials.base import (
    Cancellation,
    CredentialQuery,
    CredentialResult,
    CredentialSource,
)
from devcontainer_credprovider.exceptions import TwoFactorConfigError
from devcontainer_credprovider.output import log

TOTP_STEP_SECONDS = 30
TOTP_DIGITS = 6
TOTP_WINDOW_STEPS = 1


def _totp(secret: str) -> pyotp.TOTP:
    """Build a TOTP generator, rejecting secrets that are not valid base32."""
    totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_STEP_SECONDS)
    try:
        totp.byte_secret()
    except (binascii.Error, ValueError) as exc:
        raise TwoFactorConfigError(f"2FA secret is not valid base32: {exc}") from exc
    return totp


def current_code(secret: str, for_time: Optional[float] = None) -> str:
    """Return the code for *secret* at *for_time* (default: now).

    Raises:
        TwoFactorConfigError: If *secret* is not valid base32.
    """
    return _totp(secret).at(time.time() if for_time is None else for_time)


def verify_code(secret: str, code: str, for_time: Optional[float] = None) -> bool:
    """Check *code* against the codes for ``now - 30s``, ``now`` and ``now + 30s``.

    Args:
        secret: Base32 shared secret.
        code: The code the user supplied.
        for_time: Unix time to verify at. Defaults to now.

    Returns:
        Whether *code* matches any code in the window.

    Raises:
        TwoFactorConfigError: If *secret* is not valid base32.
    """
    totp = _totp(secret)
    now = time.time() if for_time is None else for_time
    candidates = [
        totp.at(now, counter_offset=offset)
        for offset in range(-TOTP_WINDOW_STEPS, TOTP_WINDOW_STEPS + 1)
    ]
    supplied = code.strip()
    matched = False
    for candidate in candidates:
        # Compare against every candidate so timing does not depend on position.
        matched = strings_equal(supplied, candidate) or matched
    return matched


class TwoFactorGate(CredentialSource):
    """Pipeline step that blocks token acquisition without a valid TOTP code.

    Args:
        enabled: Whether two-factor authentication is required.
        code: The user-supplied code, if any.
        secret_resolver: Called once per :meth:`acquire` to obtain the
            base32 secret. Resolution (environment, secret file) stays at
            the process edge.
        clock: Returns the current Unix time.
    """

    def __init__(
        self,
        enabled: bool,
        code: Optional[str],
        secret_resolver: Callable[[], Optional[str]],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._enabled = enabled
        self._code = code
        self._secret_resolver = secret_resolver
        self._clock = clock

    @property
    def name(self) -> str:
        return "two-factor"

    async def acquire(
        self, query: CredentialQuery, cancelled: Cancellation
    ) -> Optional[CredentialResult]:
        if not self._enabled:
            return None

        log("2FA enabled, validating...")
        if not self._code or not self._code.strip():
            log("2FA enabled but no code provided in NUGET_CREDPROVIDER_2FA_CODE", always=True)
            log("Run with --setup-2fa to configure an authenticator app", always=True)
            return CredentialResult.not_applicable("Two-factor code required")

        secret = self._secret_resolver()
        if not secret:
            log("2FA enabled but no shared secret is configured", always=True)
            return CredentialResult.not_applicable("Two-factor secret not configured")

        try:
            valid = verify_code(secret, self._code, for_time=self._clock())
        except TwoFactorConfigError as exc:
            log(f"2FA validation error: {exc}", always=True)
            return CredentialResult.not_applicable("Two-factor validation failed")

        if not valid:
            log("2FA validation failed - invalid code", always=True)
            return CredentialResult.not_applicable("Two-factor validation failed")

        log("2FA validation successful")
        return None
