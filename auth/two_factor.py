"""
auth/two_factor.py -- TOTP second factor via pyotp.

TotpVerifier is the TokenVerifier the app factory wires into AuthService.
valid_window=1 accepts the previous and next 30-second step so a code typed
at a step boundary or with slight clock skew still verifies.
"""

from __future__ import annotations

import pyotp


class TotpVerifier:
    def __init__(self, valid_window: int = 1) -> None:
        self.valid_window = valid_window

    def verify(self, secret: str, token: str) -> bool:
        if not secret or not token:
            return False
        return pyotp.TOTP(secret).verify(token.strip(), valid_window=self.valid_window)


def generate_secret() -> str:
    """Return a new base32 TOTP seed for enrolling a user."""
    return pyotp.random_base32()
