"""structlog setup shared by the API and the cron runner, plus request logging."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import LogFormat, get_settings

QUIET_PATHS = frozenset({"/health", "/health/ready"})

_configured = False


def _add_process(process: str) -> Any:
	def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
		event_dict.setdefault("service", "sproutline")
		event_dict.setdefault("process", process)
		return event_dict

	return processor


def configure_structured_logging(process: str = "api") -> None:
	"""Configure stdlib logging and structlog once per process.

	``process`` tags every event so API and cron output can share a sink.
	"""
	global _configured
	if _configured:
		return

	settings = get_settings()
	log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

	if settings.log_format == LogFormat.json:
		renderer: Any = structlog.processors.JSONRenderer()
		logging.basicConfig(level=log_level, format="%(message)s")
	else:
		renderer = structlog.dev.ConsoleRenderer()
		logging.basicConfig(level=log_level)

	structlog.configure(
		processors=[
			structlog.contextvars.merge_contextvars,
			_add_process(process),
			structlog.processors.add_log_level,
			structlog.processors.TimeStamper(fmt="iso", utc=True),
			structlog.processors.format_exc_info,
			renderer,
		],
		wrapper_class=structlog.make_filtering_bound_logger(log_level),
		logger_factory=structlog.PrintLoggerFactory(),
		cache_logger_on_first_use=True,
	)
	_configured = True


class RequestLoggingMiddleware(BaseHTTPMiddleware):
	"""Bind a request id for every lifecycle log line and time the request.

	Health probes are logged at debug level.
	"""

	async def dispatch(self, request: Request, call_next):  # type: ignore[override]
		request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
		request.state.request_id = request_id

		structlog.contextvars.clear_contextvars()
		structlog.contextvars.bind_contextvars(
			request_id=request_id,
			method=request.method,
			path=request.url.path,
		)
		logger = structlog.get_logger("sproutline.request")
		started = time.perf_counter()

		try:
			response = await call_next(request)
		except Exception:
			logger.exception("http_request_failed", duration_ms=_elapsed_ms(started))
			raise

		response.headers["x-request-id"] = request_id
		log = logger.debug if request.url.path in QUIET_PATHS else logger.info
		log("http_request", status_code=response.status_code, duration_ms=_elapsed_ms(started))
		return response


def _elapsed_ms(started: float) -> float:
	return round((time.perf_counter() - started) * 1000.0, 2)
