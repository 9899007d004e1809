import os
import re
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.eqpqiq.models import HealthSystem, OrganizationMembership, Program, User  # noqa: E402
from scripts._db_utils import resolve_db_url, script_session  # noqa: E402


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-") or "default"


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the super admin and (optionally) a first institution + program in an idempotent way.
    Does NOT overwrite an existing admin user's password.

    SEED_HEALTH_SYSTEM / SEED_PROGRAM / SEED_SPECIALTY name the first tenant; leave unset to skip.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@eqpqiq.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    hs_name = (os.environ.get("SEED_HEALTH_SYSTEM") or "").strip()
    program_name = (os.environ.get("SEED_PROGRAM") or "").strip()
    specialty = (os.environ.get("SEED_SPECIALTY") or "").strip() or None

    db_url = resolve_db_url(database_url)

    # Use a direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                full_name="Administrator",
                password_hash=generate_password_hash(admin_password),
                role="super_admin",
                is_active=True,
            )
            s.add(user)
            s.flush()
        elif user.role != "super_admin":
            user.role = "super_admin"

        if hs_name:
            hs = s.query(HealthSystem).filter(HealthSystem.slug == _slugify(hs_name)).one_or_none()
            if not hs:
                hs = HealthSystem(name=hs_name, slug=_slugify(hs_name), is_active=True)
                s.add(hs)
                s.flush()

            program = None
            if program_name:
                program = (
                    s.query(Program)
                    .filter(Program.health_system_id == hs.id, Program.slug == _slugify(program_name))
                    .one_or_none()
                )
                if not program:
                    program = Program(
                        health_system_id=hs.id,
                        name=program_name,
                        slug=_slugify(program_name),
                        specialty=specialty,
                    )
                    s.add(program)
                    s.flush()

            membership = (
                s.query(OrganizationMembership)
                .filter(OrganizationMembership.user_id == user.id, OrganizationMembership.health_system_id == hs.id)
                .one_or_none()
            )
            if not membership:
                s.add(
                    OrganizationMembership(
                        user_id=user.id,
                        health_system_id=hs.id,
                        program_id=program.id if program else None,
                        role="super_admin",
                        status="active",
                    )
                )

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    if hs_name:
        print(f"Institution: {hs_name}" + (f" / Program: {program_name}" if program_name else ""))


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
