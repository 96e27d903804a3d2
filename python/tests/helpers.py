"""Test helpers for authentication and live-delivery assertions.

Provides:
- Header generation for authenticated requests
- Recorder: a thread-safe callback sink for subscriptions
"""

import threading
from uuid import UUID

from duet.middleware.request_id import REQUEST_ID_HEADER


def auth_headers(user_id: UUID | str, request_id: str | None = None) -> dict[str, str]:
    """Headers authenticating as user_id with the fake verifier."""
    headers = {"Authorization": f"Bearer {user_id}"}
    if request_id:
        headers[REQUEST_ID_HEADER] = request_id
    return headers


class Recorder:
    """Collects callback invocations; usable as on_message/on_update/on_error."""

    def __init__(self, raise_with: BaseException | None = None):
        self.calls: list = []
        self.raise_with = raise_with
        self._lock = threading.Lock()

    def __call__(self, value) -> None:
        with self._lock:
            self.calls.append(value)
        if self.raise_with is not None:
            raise self.raise_with

    @property
    def count(self) -> int:
        with self._lock:
            return len(self.calls)

    @property
    def last(self):
        with self._lock:
            return self.calls[-1]
