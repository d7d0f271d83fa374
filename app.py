from models.base import init_engine_and_session, Base
import os
import logging
from datetime import date, datetime
from decimal import Decimal
from logging.handlers import RotatingFileHandler
from time import time

import pandas as pd
from flask import Flask, request, current_app, g, jsonify
from flask.json.provider import DefaultJSONProvider
from dotenv import load_dotenv
from sqlalchemy import text

from controllers.admin import admin_bp
from controllers.api import api_bp
from controllers.auth import auth_bp, login_manager
from services.errors import LedgerError
from services.metrics import init_app as init_metrics, REQUEST_COUNT, REQUEST_LATENCY

# --- Load .env exactly once, here ---
# If you run "python app.py", this ensures variables are loaded.
# If you use "flask run", Flask will also load .env automatically (when python-dotenv is installed).
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


class LedgerJSONProvider(DefaultJSONProvider):
    """ISO dates and exact decimal strings instead of Flask's HTTP-date / float defaults."""

    @staticmethod
    def default(o):
        if o is pd.NaT:
            return None
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, date):
            return o.isoformat()
        if isinstance(o, Decimal):
            return str(o)
        if hasattr(o, "item"):
            # numpy scalars coming out of DataFrame.to_dict()
            return o.item()
        return DefaultJSONProvider.default(o)


def _parse_seed_users(env_val: str) -> dict[str, tuple[str, str, str]]:
    """
    Parse SEED_USERS in .env like:
      "alice:alice:user:acme,bob:bob:admin:acme,carol:carol:user:globex"
    Returns {username: (password, role, tenant_id)}; role defaults to "user"
    and tenant to ADMIN_TENANT if omitted. Invalid entries are ignored.
    """
    default_tenant = os.getenv("ADMIN_TENANT", "default")
    out: dict[str, tuple[str, str, str]] = {}
    if not env_val:
        return out
    for item in env_val.split(","):
        item = item.strip()
        if not item:
            continue
        parts = [p.strip() for p in item.split(":")]
        if len(parts) < 2 or len(parts) > 4:
            continue
        u, pwd = parts[0], parts[1]
        role = parts[2] if len(parts) > 2 and parts[2] else "user"
        tenant = parts[3] if len(parts) > 3 and parts[3] else default_tenant
        if u and pwd:
            out[u] = (pwd, role, tenant)
    return out


def create_app(test_config: dict | None = None):
    app = Flask(__name__, instance_relative_config=True)
    app.json = LedgerJSONProvider(app)

    # ---- Base config from environment (no hardcoded secrets) ----
    APP_ENV = os.getenv("APP_ENV", "development").lower()

    # SECRET_KEY:
    # - In production: must be provided
    # - In dev: fall back to a random key each run (sessions will reset on restart)
    secret_key = os.getenv("FLASK_SECRET_KEY")
    if not secret_key and APP_ENV == "production":
        raise RuntimeError("FLASK_SECRET_KEY must be set in production (.env)")
    if not secret_key:
        secret_key = os.urandom(32)  # dev-only fallback

    app.config.from_mapping(
        SECRET_KEY=secret_key,
        APP_ENV=APP_ENV,

        # Ledger
        LEDGER_BASE_CURRENCY=os.getenv("LEDGER_BASE_CURRENCY", "USD").upper(),
        POST_MAX_RETRIES=int(os.getenv("POST_MAX_RETRIES", "5")),

        # Reconciliation severity bands (absolute variance, base currency)
        RECON_EPSILON=os.getenv("RECON_EPSILON", "0.01"),
        RECON_HIGH_THRESHOLD=os.getenv("RECON_HIGH_THRESHOLD", "100"),
        RECON_CRITICAL_THRESHOLD=os.getenv("RECON_CRITICAL_THRESHOLD", "1000"),
    )
    if test_config:
        app.config.update(test_config)

    # ---- Logging ----
    # default on in containers
    log_to_stdout = os.getenv("LOG_TO_STDOUT", "1") == "1"
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    if log_to_stdout:
        handler = logging.StreamHandler()
    else:
        log_dir = os.path.join(os.path.dirname(__file__), "log")
        try:
            os.makedirs(log_dir, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(log_dir, "app.log"),
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        except OSError:
            # If file logging fails (e.g., in a container), fall back to stdout
            handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))

    # avoid duplicate handlers on reload
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    app.logger.setLevel(logging.INFO)

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # ---- DB & users init ----
    from models import ledger, subledger, schema  # noqa: F401  (register tables)
    from models.users_db import get_user, create_user
    engine, _Session = init_engine_and_session()

    if _env_bool("AUTO_CREATE_SCHEMA", True):
        Base.metadata.create_all(engine, checkfirst=True)

    with app.app_context():
        # seed admin (optional)
        admin_pwd = os.getenv("ADMIN_PASSWORD")
        if admin_pwd and not get_user("admin"):
            create_user("admin", admin_pwd, role="admin",
                        tenant_id=os.getenv("ADMIN_TENANT", "default"))
            app.logger.info("Seeded admin user from .env")

        # seed extra users in dev (optional)
        if app.config["APP_ENV"] == "development":
            seeds = _parse_seed_users(os.getenv("SEED_USERS", ""))
            for u, (pwd, role, tenant) in seeds.items():
                if u != "admin" and not get_user(u):
                    create_user(u, pwd, role, tenant_id=tenant)
            if seeds:
                app.logger.info("Seeded %d users (development only)", len(seeds))

    login_manager.init_app(app)

    # ---- Blueprints ----
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(api_bp)

    # Prometheus
    if _env_bool("METRICS_ENABLED", True):
        init_metrics(app)

    # ---- Errors ----

    @app.errorhandler(LedgerError)
    def ledger_error(e: LedgerError):
        level = logging.ERROR if e.http_status >= 500 else logging.WARNING
        app.logger.log(level, "%s %s -> %s %s", request.method, request.path,
                       e.code, e.message)
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(404)
    def not_found(e):
        app.logger.warning("404 %s %s", request.method, request.path)
        return jsonify(error="not_found", message=f"no route for {request.path}"), 404

    @app.errorhandler(405)
    def not_allowed(e):
        app.logger.warning("405 %s %s", request.method, request.path)
        return jsonify(error="method_not_allowed",
                       message=f"{request.method} not allowed on {request.path}"), 405

    # ---- Routes ----
    @app.before_request
    def _start_timer():
        g._t0 = time()

    @app.after_request
    def _log_request(resp):
        try:
            ms = (time() - getattr(g, "_t0", time())) * 1000
            app.logger.info("%s %s %s %s %.1fms",
                            request.remote_addr, request.method, request.full_path, resp.status_code, ms)

            # --- Skip self-scrapes to keep series clean ---
            ep = request.endpoint or ""
            path = request.path or ""
            if path.startswith("/metrics"):
                return resp

            endpoint = ep.replace(".", "_") or "unknown"
            method = request.method
            status = str(resp.status_code)

            REQUEST_COUNT.labels(
                method=method, endpoint=endpoint, status=status).inc()
            REQUEST_LATENCY.labels(
                endpoint=endpoint, method=method).observe(ms / 1000.0)
        except Exception:
            app.logger.exception("Failed to log request")
        return resp

    @app.get("/healthz")
    def healthz():
        # Liveness: process is up, Flask can serve a simple request
        return jsonify(status="ok"), 200

    @app.get("/readyz")
    def readyz():
        # Readiness: app can talk to the DB
        try:
            engine, _ = init_engine_and_session()
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return jsonify(status="ok"), 200
        except Exception as e:
            current_app.logger.exception("Readiness check failed")
            return jsonify(status="error", error=str(e)), 500

    return app


if __name__ == "__main__":
    # TIP: use APP_ENV=production FLASK_SECRET_KEY=... when deploying
    app = create_app()
    app.run(host="0.0.0.0", port=8000, debug=(
        app.config["APP_ENV"] != "production"))
