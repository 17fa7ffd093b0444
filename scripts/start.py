#!/usr/bin/env python3
"""
Production entrypoint.

Checks the storage configuration, applies migrations (release.py), then execs
gunicorn with a worker timeout sized to the slowest request the ledger serves:
a batch create, which uploads two photos and then writes to the database.

Usage:
    python scripts/start.py

Environment:
    PORT                     listen port (default 8080)
    WEB_CONCURRENCY          gunicorn workers (default 2)
    STORAGE_TIMEOUT_SECONDS  per-upload timeout, feeds the worker timeout
    DB_TIMEOUT_SECONDS       statement timeout, feeds the worker timeout
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv  # noqa: E402

from app.agritrace.config import load_config  # noqa: E402

REQUIRED_S3_KEYS = ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
PHOTOS_PER_BATCH = 2


def _int_env(name: str, default: int, *, low: int, high: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SystemExit(f"ERROR: {name}={raw!r} is not an integer.")
    if not low <= value <= high:
        raise SystemExit(f"ERROR: {name}={value} must be between {low} and {high}.")
    return value


def check_storage(config: dict) -> None:
    """Refuse to start when photos would have nowhere to go."""
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        missing = [k for k in REQUIRED_S3_KEYS if not config.get(k)]
        if missing:
            raise SystemExit(f"ERROR: STORAGE_BACKEND=s3 but missing: {', '.join(missing)}")
        print(f"Storage: s3 bucket={config['S3_BUCKET']}", flush=True)
        return
    root = Path(config.get("LOCAL_STORAGE_ROOT") or (Path(os.getcwd()) / "storage"))
    root.mkdir(parents=True, exist_ok=True)
    if not os.access(root, os.W_OK):
        raise SystemExit(f"ERROR: LOCAL_STORAGE_ROOT {root} is not writable.")
    print(f"Storage: local root={root}", flush=True)


def worker_timeout(config: dict) -> int:
    """Seconds gunicorn allows one request: every upload plus the insert, with headroom."""
    storage_s = float(config.get("STORAGE_TIMEOUT_SECONDS") or 30.0)
    db_s = float(config.get("DB_TIMEOUT_SECONDS") or 15.0)
    return int(PHOTOS_PER_BATCH * storage_s + db_s) + 15


def main() -> None:
    load_dotenv()
    config = load_config()

    port = _int_env("PORT", 8080, low=1, high=65535)
    workers = _int_env("WEB_CONCURRENCY", 2, low=1, high=64)
    check_storage(config)

    print("=== Running release phase ===", flush=True)
    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    timeout = worker_timeout(config)
    print(f"=== Starting gunicorn on 0.0.0.0:{port} (workers={workers}, timeout={timeout}s) ===", flush=True)

    # exec so gunicorn is PID 1 and receives signals directly
    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", str(workers),
            "--timeout", str(timeout),
            "--preload",
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


if __name__ == "__main__":
    main()
