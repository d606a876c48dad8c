"""
Application exception hierarchy.

Services raise these; main.py maps them to JSON error responses and the
realtime dispatcher maps them to declined acknowledgements.

    SocialAPIError (base)
    ├── ValidationError        → 400
    ├── PermissionDeniedError  → 403
    ├── NotFoundError          → 404
    └── RateLimitedError       → 429
"""
from typing import Optional


class SocialAPIError(Exception):
    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred", context: Optional[dict] = None):
        self.message = message
        # Logged, never returned to the client
        self.context = context or {}
        super().__init__(message)


class ValidationError(SocialAPIError):
    status_code = 400


class PermissionDeniedError(SocialAPIError):
    status_code = 403


class NotFoundError(SocialAPIError):
    status_code = 404


class RateLimitedError(SocialAPIError):
    status_code = 429
