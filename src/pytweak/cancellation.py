from __future__ import annotations

import threading


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a worker.

    Workers poll :attr:`cancelled` between units of work; nothing is
    interrupted mid-operation.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled
