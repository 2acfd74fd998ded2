"""
Session token issuing.
"""

import secrets

TOKEN_ENTROPY_BYTES = 32


def issue_session_token() -> str:
    """Return a fresh URL-safe bearer secret for one gateway session."""
    return secrets.token_urlsafe(TOKEN_ENTROPY_BYTES)
