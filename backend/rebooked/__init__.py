import json
import os

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from rebooked.extensions import cors, db, migrate
from rebooked.integrations.courier.factory import courier_health
from rebooked.integrations.payments.factory import payment_health
from rebooked.segments.segment_checkout import checkout_bp
from rebooked.segments.segment_commit import commit_bp
from rebooked.segments.segment_notifications import notifications_bp
from rebooked.segments.segment_orders_api import orders_bp
from rebooked.segments.segment_payment_webhooks import webhooks_bp
from rebooked.segments.segment_wallet import wallet_bp
from rebooked.services.errors import ServiceError
from rebooked.utils.observability import init_sentry, install_request_observers
from rebooked.utils.settings import get_settings

# Read from the environment into app.config at startup.
_PASSTHROUGH_CONFIG = (
    "INTEGRATIONS_MODE",
    "PAYMENTS_PROVIDER",
    "COURIER_PROVIDER",
    "EMAIL_PROVIDER",
    "FRONTEND_URL",
    "NOTIFY_QUEUE",
    "ADDRESS_ENCRYPTION_KEY",
    "COMMIT_WINDOW_HOURS",
    "CHECKOUT_HOLD_MINUTES",
    "PLATFORM_FEE_MINOR",
)


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return max(minimum, min(maximum, value))


def _database_url(env: str, instance_dir: str) -> str:
    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        if env in ("prod", "production"):
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        database_url = "sqlite:///instance/rebooked.db"
    # Relative SQLite paths resolve to one file under backend/instance.
    if database_url.startswith("sqlite://") and database_url != "sqlite:///:memory:":
        canonical_path = os.path.join(instance_dir, "rebooked.db")
        database_url = f"sqlite:///{canonical_path.replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    return database_url


def _engine_options(database_url: str) -> dict:
    if database_url == "sqlite:///:memory:":
        return {}
    options = {
        "pool_pre_ping": True,
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
    return options


def _error_payload(error: str, message: str, status: int) -> dict:
    payload = {"ok": False, "error": error, "message": message, "status": int(status)}
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def _register_cli(app: Flask) -> None:
    @app.cli.command("reconcile-wallets")
    @click.option("--user", "user_id", default="", help="Only check this user's wallet.")
    def reconcile_wallets(user_id: str):
        """Report wallets whose balance disagrees with the ledger."""
        from rebooked.services.reconciliation_service import recompute_wallet_balances

        summary = recompute_wallet_balances(user_id=user_id or None)
        click.echo(json.dumps(summary, indent=2))
        if summary["drift_count"]:
            raise SystemExit(2)

    @app.cli.command("expire-commitments")
    def expire_commitments():
        """Cancel orders whose seller missed the commit deadline and free abandoned checkouts."""
        from rebooked.jobs.commit_deadline_runner import run_commit_deadline_sweep

        click.echo(json.dumps(run_commit_deadline_sweep(), indent=2))


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("REBOOKED_ENV", "dev") or "dev").strip().lower()

    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["REBOOKED_ENV"] = env
    for key in _PASSTHROUGH_CONFIG:
        if os.getenv(key) is not None:
            app.config[key] = os.getenv(key)

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    database_url = _database_url(env, instance_dir)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(database_url)

    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    @app.errorhandler(ServiceError)
    def _service_error(error: ServiceError):
        db.session.rollback()
        payload = error.to_dict()
        payload["status"] = int(error.status)
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), int(error.status)

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        return jsonify(_error_payload(error.name, error.description or error.name, error.code or 500)), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        db.session.rollback()
        app.logger.exception("unhandled_exception path=%s", request.path)
        return jsonify(_error_payload("InternalServerError", "Internal server error", 500)), 500

    app.register_blueprint(commit_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(notifications_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            app.logger.warning("health_db_failed err=%s", str(e)[:300])
        settings = get_settings()
        return jsonify(
            {
                "ok": db_state == "ok",
                "service": "rebooked-backend",
                "env": env,
                "db": db_state,
                "payments": payment_health(settings),
                "courier": courier_health(settings),
            }
        )

    _register_cli(app)
    return app
