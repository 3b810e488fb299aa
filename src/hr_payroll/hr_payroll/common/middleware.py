from __future__ import annotations

import json
import logging
import os
import time
from typing import Any

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException


def init_request_id(app: Flask) -> None:
    @app.before_request
    def _set_request_id():
        incoming = str(request.headers.get("X-Request-ID") or "").strip()
        g.request_id = incoming or os.urandom(8).hex()
        g.start_ts = time.monotonic()

    @app.after_request
    def _add_header(resp):
        rid = getattr(g, "request_id", "")
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp


def init_request_logging(app: Flask) -> None:
    logger = logging.getLogger("hr_payroll.request")

    @app.after_request
    def _log(resp):
        start = getattr(g, "start_ts", None)
        latency_ms = int((time.monotonic() - start) * 1000) if isinstance(start, (int, float)) else None

        ip = request.headers.get("X-Forwarded-For", request.remote_addr or "")
        if ip and "," in ip:
            ip = ip.split(",", 1)[0].strip()

        data: dict[str, Any] = {
            "type": "request",
            "request_id": getattr(g, "request_id", ""),
            "method": request.method,
            "path": request.path,
            "status": resp.status_code,
            "latency_ms": latency_ms,
            "ip": ip,
        }
        logger.info(json.dumps(data, separators=(",", ":")))
        return resp


def init_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def _http_error(err: HTTPException):
        return jsonify({"ok": False, "error": str(err.description or "HTTP error")}), int(err.code or 500)

    @app.errorhandler(Exception)
    def _unhandled(err: Exception):
        logging.getLogger("hr_payroll").exception("Unhandled exception request_id=%s", getattr(g, "request_id", ""))
        return jsonify({"ok": False, "error": "Unexpected error"}), 500
