"""Time source injected into lifecycle services."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
	def now(self) -> datetime: ...


class SystemClock:
	"""Wall clock, always timezone-aware UTC."""

	def now(self) -> datetime:
		return datetime.now(UTC)
