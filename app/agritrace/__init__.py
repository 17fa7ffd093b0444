import logging
import os
from datetime import timedelta

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError

from app.agritrace.config import load_config
from app.agritrace.db import init_db, teardown_db_session
from app.agritrace.errors import StorageError, TraceError
from app.agritrace.routes import bp as routes_bp
from app.agritrace.auth import bp as auth_bp, load_current_user
from app.agritrace.modules.batches.api import bp as batches_bp
from app.agritrace.modules.media.api import bp as media_bp, public_bp as media_files_bp
from app.agritrace.modules.activities.api import bp as activities_bp
from app.agritrace.modules.trace.api import bp as trace_bp

# Tables (and key columns) the ledger code expects to exist.
EXPECTED_SCHEMA = {
    "users": ("role",),
    "batches": ("trace_id", "batch_id", "producer_id"),
    "media": ("trace_id", "storage_key", "url"),
    "activities": ("trace_id", "actor_role", "submission_id"),
    "audit_events": ("actor_role",),
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = []
        for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
            if not app.config.get(key):
                missing_s3.append(key)
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from app.agritrace.storage import S3Storage, storage_from_config

            storage = storage_from_config(app.config)
            try:
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except Exception as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(batches_bp, url_prefix="/api")
    app.register_blueprint(media_bp, url_prefix="/api")
    app.register_blueprint(activities_bp, url_prefix="/api")
    app.register_blueprint(trace_bp, url_prefix="/api")
    app.register_blueprint(media_files_bp, url_prefix="/media")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    # Re-checked on each /api request until it passes, then cached.
    app.config.setdefault("_schema_health_ok", False)
    app.config.setdefault("_schema_health_logged", False)

    def _run_schema_health_check() -> list[str]:
        missing: list[str] = []
        engine = app.extensions.get("sqlalchemy_engine")
        if engine is None:
            raise RuntimeError("sqlalchemy_engine not initialized")
        insp = sa_inspect(engine)
        for table, cols in EXPECTED_SCHEMA.items():
            if not insp.has_table(table):
                missing.append(f"{table} (table)")
                continue
            present = {c["name"] for c in insp.get_columns(table)}
            missing.extend(f"{table}.{c}" for c in cols if c not in present)
        return missing

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok") or not request.path.startswith("/api"):
            return None
        try:
            missing = _run_schema_health_check()
        except SQLAlchemyError as e:
            app.logger.exception("Schema health check failed: %s", e)
            return jsonify({"error": "database_unavailable", "message": "Database unavailable."}), 503
        if not missing:
            app.config["_schema_health_ok"] = True
            return None
        if not app.config.get("_schema_health_logged"):
            app.config["_schema_health_logged"] = True
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        return jsonify({"error": "schema_out_of_date", "missing": missing}), 503

    @app.errorhandler(TraceError)
    def _err_trace(e: TraceError):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if e.user_fixable:
            app.logger.info("Request rejected: %s (%s) request_id=%s", e.code, e.message, rid)
        elif isinstance(e, StorageError) or e.status_code >= 500:
            app.logger.error("System fault: %s (%s) request_id=%s cause=%r", e.code, e.message, rid, e.__cause__)
        else:
            app.logger.warning("Forbidden: %s (%s) request_id=%s", e.code, e.message, rid)
        body = e.to_dict()
        body["request_id"] = rid
        return jsonify(body), e.status_code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return jsonify({"error": "internal_error", "message": "Internal server error.", "request_id": rid}), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"error": "not_found", "message": "Not found."}), 404

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = int(app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return jsonify({"error": "too_large", "message": f"Upload too large. Maximum size is {limit_mb}MB."}), 413

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
