"""Fuentes de tiempo inyectables para el cálculo de pasos TOTP."""
from datetime import datetime, timedelta, timezone
import time


class SystemClock:
    """Reloj real (UTC)."""

    def timestamp(self) -> float:
        return time.time()

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp(), tz=timezone.utc)

    def time_step(self, period: int = 30) -> int:
        return int(self.timestamp() // period)


class FixedClock(SystemClock):
    """Reloj congelado para pruebas; ``advance`` lo mueve hacia adelante."""

    def __init__(self, timestamp: float):
        self._timestamp = float(timestamp)

    def timestamp(self) -> float:
        return self._timestamp

    def set(self, timestamp: float) -> None:
        self._timestamp = float(timestamp)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        delta = timedelta(seconds=seconds, **kwargs)
        self._timestamp += delta.total_seconds()


def as_utc(value):
    """Normaliza datetimes naive (SQLite) a UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
