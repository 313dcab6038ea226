"""
Authentication package.

Exports the BearerAuth dependency class, the Principal identity and token
parsing utilities for use by FastAPI route handlers.

CHANGELOG:
- 2026-10-17: Initial creation
"""

from solarmon.auth.bearer import BearerAuth, Principal, parse_api_tokens, verify_token

__all__ = ["BearerAuth", "Principal", "parse_api_tokens", "verify_token"]
