"""
Request-level chat errors.

Raised only before a response stream opens; the HTTP layer maps each to a
plain-text response with its status code.
"""

from __future__ import annotations


class ChatError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(ChatError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class BadRequest(ChatError):
    status_code = 400


class NotFound(ChatError):
    status_code = 404

    def __init__(self, message: str = "Not Found"):
        super().__init__(message)
