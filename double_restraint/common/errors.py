from typing import Any


class RestraintError(Exception):
    """Basis-Exception für das Projekt."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.details = details or {}


class CapacityExceededError(RestraintError):
    """Vom Limiter geworfen, wenn ein Pool bereits voll belegt ist."""

    def __init__(self, pool: str, capacity: int):
        super().__init__(
            f"Pool {pool} is at capacity ({capacity})",
            details={"pool": pool, "capacity": capacity},
        )
        self.pool = pool
        self.capacity = capacity


class ThrottledError(RestraintError):
    """Zu viele gleichzeitige Aufrufe; der Aufrufer kann es später erneut versuchen."""

    def __init__(self, pool: str, limit: int):
        super().__init__(
            f"{pool} throttled: limit of {limit} concurrent executions reached",
            details={"pool": pool, "limit": limit},
        )
        self.pool = pool
        self.limit = limit


# Standard-Klassifizierung für Timeouts (deckt auch socket.timeout ab)
DEFAULT_TIMEOUT_ERRORS: tuple[type[BaseException], ...] = (TimeoutError,)
