from __future__ import annotations

import importlib
import logging
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask

from config import get_settings_module

from .common.logging import setup_logging
from .common.middleware import init_error_handlers, init_request_id, init_request_logging
from .container import Container, build_container
from .database.bootstrap import apply_schema, apply_seed_sql, ensure_demo_users, list_tables

from .attendance.controller import register as register_attendance
from .audit.controller import register as register_audit
from .employees.controller import register as register_employees
from .leave.controller import register as register_leave
from .material_requests.controller import register as register_material_requests
from .overtime.controller import register as register_overtime
from .payroll.controller import register as register_payroll
from .reports.controller import register as register_reports
from .users.controller import register as register_users

logger = logging.getLogger("hr_payroll")

REPO_ROOT = Path(__file__).resolve().parents[3]

REGISTRARS = (
    register_users,
    register_audit,
    register_employees,
    register_attendance,
    register_leave,
    register_overtime,
    register_material_requests,
    register_payroll,
    register_reports,
)


def register_routes(app: Flask, container: Container) -> None:
    for register in REGISTRARS:
        register(app, container)
    init_request_id(app)
    init_request_logging(app)
    init_error_handlers(app)


def create_app(container: Container | None = None) -> Flask:
    load_dotenv(override=False)
    app = Flask(__name__)

    settings_module = get_settings_module()
    settings = importlib.import_module(settings_module)
    setup_logging(str(getattr(settings, "LOG_LEVEL", "INFO")).upper())

    app.secret_key = getattr(settings, "SECRET_KEY")
    app.config["DEBUG"] = bool(getattr(settings, "DEBUG", False))
    app.config["TESTING"] = bool(getattr(settings, "TESTING", False))
    app.config["SESSION_DAYS"] = int(getattr(settings, "SESSION_DAYS", 7))
    db_config = getattr(settings, "DB_CONFIG")

    if container is None:
        logger.info(
            "settings=%s db=%s@%s:%s/%s",
            settings_module,
            db_config.get("user"),
            db_config.get("host"),
            db_config.get("port", 3306),
            db_config.get("database"),
        )
        if getattr(settings, "AUTO_INIT_DB", False):
            apply_schema(db_config, schema_path=REPO_ROOT / "database" / "schema.sql")
            logger.info("schema ready (tables=%d)", len(list_tables(db_config)))
        if getattr(settings, "AUTO_SEED_DB", False):
            apply_seed_sql(db_config, seed_path=REPO_ROOT / "database" / "seed.sql")
            ensure_demo_users(db_config)
            logger.info("demo seed ready")
        container = build_container(db_config=db_config)

    register_routes(app, container)
    return app
