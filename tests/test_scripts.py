import pytest
from sqlalchemy import create_engine

from app.eqpqiq.models import Base, HealthSystem, OrganizationMembership, Program, User
from scripts import init_db, release, start
from scripts._db_utils import normalize_db_url, script_session


def test_normalize_db_url():
    assert normalize_db_url("postgres://u:p@h/db") == "postgresql://u:p@h/db"
    assert normalize_db_url("sqlite:///x.db") == "sqlite:///x.db"


def test_seed_only_is_idempotent(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    engine = create_engine(url)
    Base.metadata.create_all(bind=engine)
    engine.dispose()

    monkeypatch.setenv("ADMIN_EMAIL", "Root@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "s3cret")
    monkeypatch.setenv("SEED_HEALTH_SYSTEM", "Memorial Health")
    monkeypatch.setenv("SEED_PROGRAM", "Emergency Medicine")
    monkeypatch.setenv("SEED_SPECIALTY", "EM")

    init_db.seed_only(database_url=url)
    init_db.seed_only(database_url=url)

    with script_session(url) as s:
        users = s.query(User).all()
        assert [(u.email, u.role) for u in users] == [("root@example.com", "super_admin")]
        hs = s.query(HealthSystem).one()
        assert hs.slug == "memorial-health"
        program = s.query(Program).one()
        assert (program.slug, program.specialty) == ("emergency-medicine", "EM")
        membership = s.query(OrganizationMembership).one()
        assert membership.program_id == program.id
        assert membership.role == "super_admin"


def test_preflight_flags_production_misconfiguration():
    errors, warnings = release.preflight({"ENV": "production", "DATABASE_URL": "sqlite:///x.db"})
    assert "DATABASE_URL points at sqlite; production needs Postgres" in errors
    assert "SECRET_KEY is unset or still the default" in errors
    assert any(w.startswith("CRON_SECRET is not set") for w in warnings)
    assert any(w.startswith("APP_BASE_URL is not set") for w in warnings)

    errors, warnings = release.preflight(
        {
            "ENV": "production",
            "DATABASE_URL": "postgres://u:p@h/db",
            "SECRET_KEY": "real-secret",
            "APP_BASE_URL": "https://eqpqiq.example.com",
            "CRON_SECRET": "cron",
            "RESEND_API_KEY": "re_123",
            "ADMIN_PASSWORD": "pw",
        }
    )
    assert errors == []
    assert warnings == []


def test_preflight_requires_database_url():
    errors, _ = release.preflight({})
    assert errors == ["DATABASE_URL is not set"]


def test_release_check_only_exit_code(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert release.main(["--check-only"]) == 1
    monkeypatch.setenv("DATABASE_URL", "sqlite:///x.db")
    monkeypatch.setenv("ENV", "dev")
    assert release.main(["--check-only"]) == 0


def test_release_refuses_to_run_with_errors(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(release.ReleaseError, match="DATABASE_URL is not set"):
        release.run_release()


def test_gunicorn_argv_defaults_and_tuning():
    argv = start.gunicorn_argv({})
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:8080"
    assert argv[argv.index("--workers") + 1] == "2"
    assert "--threads" not in argv

    argv = start.gunicorn_argv({"PORT": "5000", "WEB_CONCURRENCY": "4", "GUNICORN_THREADS": "8", "GUNICORN_TIMEOUT": "120"})
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:5000"
    assert argv[argv.index("--workers") + 1] == "4"
    assert argv[argv.index("--threads") + 1] == "8"
    assert argv[argv.index("--worker-class") + 1] == "gthread"
    assert argv[argv.index("--timeout") + 1] == "120"


@pytest.mark.parametrize(
    "env",
    [{"PORT": "http"}, {"PORT": "70000"}, {"WEB_CONCURRENCY": "0"}, {"GUNICORN_TIMEOUT": "1"}],
)
def test_gunicorn_argv_rejects_bad_values(env):
    with pytest.raises(start.StartupError):
        start.gunicorn_argv(env)


def test_release_can_be_disabled():
    assert start.release_enabled({}) is True
    assert start.release_enabled({"RUN_RELEASE": "0"}) is False
    assert start.release_enabled({"RUN_RELEASE": "false"}) is False
