"""
Structured JSON Logging
========================
Configures Python's logging to emit JSON-structured log lines in
production and human-readable lines everywhere else.

Usage:
    from notice_vault.core.logging import init_logging
    init_logging(app)

Each JSON log line contains:
  - timestamp (ISO-8601 UTC)
  - level
  - logger (module name)
  - message
  - request_id / method / path (when emitted while serving a request)

Uses stdlib ``logging`` with a custom ``Formatter``.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request

from notice_vault.core.config import settings

_request_ctx: ContextVar[Optional[dict]] = ContextVar("notice_vault_request", default=None)


class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        ctx = _request_ctx.get()
        if ctx:
            payload.update(ctx)

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(level: Optional[str] = None, *, json_output: Optional[bool] = None) -> None:
    """Configure the root logger. Safe to call more than once."""
    is_production = settings.app_env == "production"
    if json_output is None:
        json_output = is_production
    if level is None:
        level = settings.log_level

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicate output
    for handler in root.handlers[:]:
        root.handlers.remove(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(_JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    root.addHandler(handler)


def init_logging(app: FastAPI, *, level: Optional[str] = None) -> None:
    """
    Attach structured logging and request tracing to the FastAPI app.

    Every response carries an ``X-Request-ID`` header matching the
    ``request_id`` field of the log lines emitted while serving it.
    """
    configure_logging(level)
    http_logger = logging.getLogger("notice_vault.http")

    @app.middleware("http")
    async def _request_logging(request: Request, call_next):
        request_id = uuid.uuid4().hex
        token = _request_ctx.set(
            {"request_id": request_id, "method": request.method, "path": request.url.path}
        )
        try:
            http_logger.info("request_start %s %s", request.method, request.url.path)
            response = await call_next(request)
            http_logger.info(
                "request_end %s %s status=%d",
                request.method,
                request.url.path,
                response.status_code,
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            _request_ctx.reset(token)

    logging.getLogger("notice_vault").info(
        "Structured logging initialised (level=%s, json=%s)",
        level or settings.log_level,
        settings.app_env == "production",
    )
