"""Errors raised by the tool backend clients."""

from __future__ import annotations


class BackendError(Exception):
    """A generation or retrieval backend failed, or returned nothing usable."""

    def __init__(self, message: str, status_code: int | None = None, detail: object = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
