"""
Session authentication for the gateway.

Tokens are random per session and live only in memory.
"""

from .tokens import issue_session_token

__all__ = ["issue_session_token"]
