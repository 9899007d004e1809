#!/usr/bin/env python3
"""
Container entrypoint for the EQ PQ IQ web service.

Runs the release phase unless RUN_RELEASE=0 (platforms with a separate
release step), then execs gunicorn on app.wsgi:app.

Tuning comes from the environment:
    PORT              bind port (default 8080)
    WEB_CONCURRENCY   gunicorn workers (default 2)
    GUNICORN_THREADS  threads per worker (default 1)
    GUNICORN_TIMEOUT  worker timeout in seconds (default 60)
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

WSGI_TARGET = "app.wsgi:app"


class StartupError(ValueError):
    pass


def _int_env(environ, name: str, default: int, *, lo: int, hi: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise StartupError(f"{name} must be an integer, got {raw!r}") from None
    if value < lo or value > hi:
        raise StartupError(f"{name} must be between {lo} and {hi}, got {value}")
    return value


def gunicorn_argv(environ=None) -> list[str]:
    environ = os.environ if environ is None else environ
    port = _int_env(environ, "PORT", 8080, lo=1, hi=65535)
    workers = _int_env(environ, "WEB_CONCURRENCY", 2, lo=1, hi=64)
    threads = _int_env(environ, "GUNICORN_THREADS", 1, lo=1, hi=64)
    timeout = _int_env(environ, "GUNICORN_TIMEOUT", 60, lo=5, hi=3600)

    argv = [
        "gunicorn",
        WSGI_TARGET,
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]
    if threads > 1:
        argv += ["--threads", str(threads), "--worker-class", "gthread"]
    return argv


def release_enabled(environ=None) -> bool:
    environ = os.environ if environ is None else environ
    return (environ.get("RUN_RELEASE") or "1").strip().lower() not in ("0", "false", "no")


def main() -> None:
    try:
        argv = gunicorn_argv()
    except StartupError as e:
        print(f"ERROR: {e}", flush=True)
        sys.exit(1)

    if release_enabled():
        from scripts.release import ReleaseError, run_release

        try:
            run_release()
        except ReleaseError as e:
            print(f"Release failed: {e}", flush=True)
            sys.exit(1)
    else:
        print("RUN_RELEASE=0, skipping migrations and seed", flush=True)

    print("Starting: " + " ".join(argv), flush=True)
    # gunicorn replaces this process so it receives the container's signals
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
