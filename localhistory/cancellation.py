"""
Cooperative cancellation.

Operations check ``token.is_cancellation_requested`` when they start and
after each awaited store operation. A cancelled operation returns a neutral
result and keeps whatever side effects already happened.
"""


class CancellationToken:
    """Read-only view of a cancellation signal."""

    NONE: "CancellationToken"

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"


# A token nobody can cancel
CancellationToken.NONE = CancellationToken()


class CancellationTokenSource:
    """Owner side of a token: hand out ``source.token``, call ``cancel()``."""

    def __init__(self) -> None:
        self.token = CancellationToken()

    def cancel(self) -> None:
        self.token._cancelled = True
