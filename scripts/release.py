"""
Release phase: settings check, Alembic upgrade, super-admin seed.

Usage:
  python scripts/release.py                 # all steps
  python scripts/release.py --skip-seed     # migrations only
  python scripts/release.py --check-only    # report configuration problems and exit
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

PROD_ENVS = ("prod", "production")


class ReleaseError(RuntimeError):
    pass


def preflight(environ: dict[str, str] | None = None) -> tuple[list[str], list[str]]:
    """
    Returns (errors, warnings) for the deployment environment.
    Errors stop the release; warnings name features that will run degraded.
    """
    environ = os.environ if environ is None else environ
    env = (environ.get("ENV") or "").strip().lower()
    db_url = (environ.get("DATABASE_URL") or "").strip()
    errors: list[str] = []
    warnings: list[str] = []

    if not db_url:
        errors.append("DATABASE_URL is not set")
    if env in PROD_ENVS:
        if db_url.startswith("sqlite"):
            errors.append("DATABASE_URL points at sqlite; production needs Postgres")
        if (environ.get("SECRET_KEY") or "change-me").strip() in ("", "change-me"):
            errors.append("SECRET_KEY is unset or still the default")
        if not (environ.get("APP_BASE_URL") or "").strip():
            warnings.append("APP_BASE_URL is not set; survey links in emails will be relative")
    if not (environ.get("CRON_SECRET") or "").strip():
        warnings.append("CRON_SECRET is not set; /api/cron/survey-reminders will reject every call")
    if not (environ.get("RESEND_API_KEY") or "").strip():
        warnings.append("RESEND_API_KEY is not set; invitations and reminders are only logged")
    if not (environ.get("ADMIN_PASSWORD") or "").strip():
        warnings.append("ADMIN_PASSWORD is not set; a newly seeded super admin gets the default password")
    return errors, warnings


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    from scripts._db_utils import normalize_db_url

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", normalize_db_url(db_url))
    command.upgrade(cfg, "head")


def run_release(*, run_migrations: bool = True, run_seed: bool = True) -> None:
    errors, warnings = preflight()
    for w in warnings:
        print(f"WARNING: {w}", flush=True)
    if errors:
        raise ReleaseError("; ".join(errors))

    db_url = os.environ["DATABASE_URL"].strip()
    print(f"=== EQ PQ IQ release (ENV={os.environ.get('ENV') or '(unset)'}) ===", flush=True)
    if run_migrations:
        print("Upgrading schema to head...", flush=True)
        migrate(db_url)
    if run_seed:
        print("Seeding super admin and default program (idempotent)...", flush=True)
        from scripts import init_db

        init_db.seed_only(database_url=db_url)
    print("=== release done ===", flush=True)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the EQ PQ IQ release phase.")
    parser.add_argument("--skip-migrations", action="store_true")
    parser.add_argument("--skip-seed", action="store_true")
    parser.add_argument("--check-only", action="store_true", help="only validate the environment")
    args = parser.parse_args(argv)

    if args.check_only:
        errors, warnings = preflight()
        for w in warnings:
            print(f"WARNING: {w}", flush=True)
        for e in errors:
            print(f"ERROR: {e}", flush=True)
        return 1 if errors else 0

    run_release(run_migrations=not args.skip_migrations, run_seed=not args.skip_seed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
