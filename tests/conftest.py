import pytest
from werkzeug.security import generate_password_hash

from app.eqpqiq import create_app
from app.eqpqiq.auth import _login_attempts
from app.eqpqiq.db import session_scope
from app.eqpqiq.models import (
    AcademicClass,
    ApiToken,
    Base,
    Faculty,
    HealthSystem,
    OrganizationMembership,
    Program,
    Resident,
    User,
)
from app.eqpqiq.security import hash_token

ORG = "memorial"
DEPT = "em"

# Raw bearer tokens per seeded user.
TOKENS = {
    "admin": "tok-admin",
    "pd": "tok-pd",
    "faculty": "tok-faculty",
    "resident": "tok-resident",
    "viewer": "tok-viewer",
    "outsider": "tok-outsider",
    "unaffiliated": "tok-unaffiliated",
}


@pytest.fixture()
def flask_app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CRON_SECRET", "cron-secret")
    monkeypatch.setenv("APP_BASE_URL", "https://app.test")
    for k in ("RESEND_API_KEY", "ADMIN_EMAIL", "FROM_EMAIL"):
        monkeypatch.delenv(k, raising=False)
    _login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def outbox(monkeypatch):
    """Captures every email instead of sending it."""
    sent = []

    def _fake_send(to, subject, html, **kwargs):
        sent.append({"to": to, "subject": subject, "html": html})
        return True

    monkeypatch.setattr("app.eqpqiq.notifications.send_email", _fake_send)
    return sent


def _user(s, key, email, role, full_name):
    u = User(
        email=email,
        full_name=full_name,
        password_hash=generate_password_hash("pw"),
        role=role,
        is_active=True,
    )
    s.add(u)
    s.flush()
    s.add(ApiToken(user_id=u.id, token_hash=hash_token(TOKENS[key]), name="tests"))
    return u


@pytest.fixture()
def world(flask_app):
    """
    One health system with an EM program, a class of 2027 and a class of 2028,
    plus a second organization for cross-tenant checks. Returns ids by name.
    """
    ids = {}
    with session_scope(flask_app) as s:
        hs = HealthSystem(name="Memorial Health", slug=ORG)
        other_hs = HealthSystem(name="Elsewhere Health", slug="elsewhere")
        s.add_all([hs, other_hs])
        s.flush()
        program = Program(health_system_id=hs.id, name="Emergency Medicine", slug=DEPT, specialty="EM", program_length=3)
        other_program = Program(health_system_id=other_hs.id, name="Surgery", slug="surg", specialty="Surgery")
        s.add_all([program, other_program])
        s.flush()
        c2027 = AcademicClass(program_id=program.id, graduation_year=2027, name="Class of 2027")
        c2028 = AcademicClass(program_id=program.id, graduation_year=2028, name="Class of 2028")
        s.add_all([c2027, c2028])
        s.flush()

        admin = _user(s, "admin", "admin@example.com", "super_admin", "Ada Admin")
        pd = _user(s, "pd", "pd@example.com", "program_director", "Pat Director")
        fac = _user(s, "faculty", "fac@example.com", "faculty", "Frankie Faculty")
        res = _user(s, "resident", "res@example.com", "resident", "Riley Resident")
        viewer = _user(s, "viewer", "viewer@example.com", "viewer", "Val Viewer")
        outsider = _user(s, "outsider", "out@example.com", "program_director", "Oz Outsider")
        unaffiliated = _user(s, "unaffiliated", "solo@example.com", "program_director", "Sol Unaffiliated")

        for u, role in ((pd, "program_director"), (fac, "faculty"), (res, "resident"), (viewer, "viewer")):
            s.add(
                OrganizationMembership(
                    user_id=u.id, health_system_id=hs.id, program_id=program.id, role=role, status="active"
                )
            )
        s.add(
            OrganizationMembership(
                user_id=outsider.id,
                health_system_id=other_hs.id,
                program_id=other_program.id,
                role="program_director",
                status="active",
            )
        )

        r1 = Resident(user_id=res.id, program_id=program.id, class_id=c2027.id, full_name="Riley Resident", email="res@example.com")
        r2 = Resident(program_id=program.id, class_id=c2027.id, full_name="Sam Second", email="sam@example.com")
        r3 = Resident(program_id=program.id, class_id=c2028.id, full_name="Taylor Third", email="taylor@example.com")
        faculty = Faculty(user_id=fac.id, program_id=program.id, full_name="Frankie Faculty", email="fac@example.com")
        s.add_all([r1, r2, r3, faculty])
        s.flush()

        ids.update(
            hs=hs.id,
            other_hs=other_hs.id,
            program=program.id,
            other_program=other_program.id,
            class_2027=c2027.id,
            class_2028=c2028.id,
            admin=admin.id,
            pd=pd.id,
            faculty_user=fac.id,
            resident_user=res.id,
            viewer=viewer.id,
            outsider=outsider.id,
            unaffiliated=unaffiliated.id,
            resident1=r1.id,
            resident2=r2.id,
            resident3=r3.id,
            faculty=faculty.id,
        )
    return ids


def auth(who: str, *, tenant: bool = True) -> dict:
    headers = {"Authorization": f"Bearer {TOKENS[who]}"}
    if tenant:
        headers.update({"X-Org-Slug": ORG, "X-Dept-Slug": DEPT})
    return headers
