"""initial schema: tenancy, surveys, ratings, pulse check, interviews, access requests

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    """Create every table; tables that already exist are left alone."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    # ---------- accounts / tenancy ----------
    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("personal_email", sa.String(320), nullable=True),
            sa.Column("institutional_email", sa.String(320), nullable=True),
            sa.Column("full_name", sa.String(255), nullable=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("role", sa.String(64), nullable=False, server_default="viewer"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("account_status", sa.String(32), nullable=False, server_default="active"),
            sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
            _created_at(),
        )

    if "api_tokens" not in existing_tables:
        op.create_table(
            "api_tokens",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=True),
            _created_at(),
            sa.Column("last_used_at", sa.DateTime(), nullable=True),
            sa.Column("revoked_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_api_tokens_user_id", "api_tokens", ["user_id"])

    if "health_systems" not in existing_tables:
        op.create_table(
            "health_systems",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("slug", sa.String(128), nullable=False, unique=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
        )

    if "programs" not in existing_tables:
        op.create_table(
            "programs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "health_system_id", sa.Integer(), sa.ForeignKey("health_systems.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("slug", sa.String(128), nullable=False),
            sa.Column("specialty", sa.String(128), nullable=True),
            sa.Column("program_length", sa.Integer(), nullable=False, server_default="3"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.UniqueConstraint("health_system_id", "slug", name="uq_programs_health_system_slug"),
        )

    if "academic_classes" not in existing_tables:
        op.create_table(
            "academic_classes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("program_id", sa.Integer(), sa.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False),
            sa.Column("graduation_year", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(128), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.UniqueConstraint("program_id", "graduation_year", name="uq_academic_classes_program_year"),
        )

    if "organization_memberships" not in existing_tables:
        op.create_table(
            "organization_memberships",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "health_system_id", sa.Integer(), sa.ForeignKey("health_systems.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("program_id", sa.Integer(), sa.ForeignKey("programs.id", ondelete="CASCADE"), nullable=True),
            sa.Column("role", sa.String(64), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            _created_at(),
        )
        op.create_index("ix_organization_memberships_user_id", "organization_memberships", ["user_id"])

    if "residents" not in existing_tables:
        op.create_table(
            "residents",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("program_id", sa.Integer(), sa.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "class_id", sa.Integer(), sa.ForeignKey("academic_classes.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("full_name", sa.String(255), nullable=False),
            sa.Column("email", sa.String(320), nullable=True),
            sa.Column("medical_school", sa.String(255), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
        )
        op.create_index("ix_residents_user_id", "residents", ["user_id"])
        op.create_index("ix_residents_program_id", "residents", ["program_id"])
        op.create_index("ix_residents_email", "residents", ["email"])

    if "faculty" not in existing_tables:
        op.create_table(
            "faculty",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("program_id", sa.Integer(), sa.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False),
            sa.Column("full_name", sa.String(255), nullable=False),
            sa.Column("email", sa.String(320), nullable=True),
            sa.Column("faculty_type", sa.String(32), nullable=False, server_default="core"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
        )
        op.create_index("ix_faculty_user_id", "faculty", ["user_id"])
        op.create_index("ix_faculty_program_id", "faculty", ["program_id"])
        op.create_index("ix_faculty_email", "faculty", ["email"])

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            _created_at(),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
        )

    # ---------- surveys / ratings ----------
    if "surveys" not in existing_tables:
        op.create_table(
            "surveys",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("program_id", sa.Integer(), sa.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "class_id", sa.Integer(), sa.ForeignKey("academic_classes.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("survey_type", sa.String(64), nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("period_label", sa.String(64), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
            sa.Column("deadline", sa.DateTime(), nullable=True),
            sa.Column("auto_remind", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("remind_every_days", sa.Integer(), nullable=False, server_default="3"),
            sa.Column("max_reminders", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("audience_filter", sa.JSON(), nullable=False),
            sa.Column("settings", sa.JSON(), nullable=False),
            sa.Column("created_by_email", sa.String(320), nullable=True),
            sa.Column(
                "created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_surveys_program", "surveys", ["program_id"])
        op.create_index("idx_surveys_status", "surveys", ["status"])

    if "survey_respondents" not in existing_tables:
        op.create_table(
            "survey_respondents",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("survey_id", sa.Integer(), sa.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("phone", sa.String(64), nullable=True),
            sa.Column("role", sa.String(32), nullable=True),
            sa.Column("rater_type", sa.String(32), nullable=True),
            sa.Column("guidance_min", sa.Integer(), nullable=True),
            sa.Column("token", sa.String(64), nullable=False, unique=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column("started_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("progress_data", sa.JSON(), nullable=True),
            sa.Column("reminder_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_reminded_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.UniqueConstraint("survey_id", "email", name="uq_survey_respondents_survey_email"),
        )
        op.create_index("idx_survey_respondents_status", "survey_respondents", ["status"])

    if "structured_ratings" not in existing_tables:
        score = lambda name: sa.Column(name, sa.Float(), nullable=True)  # noqa: E731
        op.create_table(
            "structured_ratings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("resident_id", sa.Integer(), sa.ForeignKey("residents.id", ondelete="CASCADE"), nullable=False),
            sa.Column("rater_type", sa.String(32), nullable=False),
            sa.Column("faculty_id", sa.Integer(), sa.ForeignKey("faculty.id", ondelete="SET NULL"), nullable=True),
            sa.Column("survey_id", sa.Integer(), sa.ForeignKey("surveys.id", ondelete="SET NULL"), nullable=True),
            sa.Column(
                "respondent_id",
                sa.Integer(),
                sa.ForeignKey("survey_respondents.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("evaluation_date", sa.Date(), nullable=False),
            sa.Column("period_label", sa.String(64), nullable=True),
            sa.Column("pgy_level", sa.Integer(), nullable=True),
            sa.Column("period", sa.String(16), nullable=True),
            score("eq_empathy_positive_interactions"),
            score("eq_adaptability_self_awareness"),
            score("eq_stress_management_resilience"),
            score("eq_curiosity_growth_mindset"),
            score("eq_effectiveness_communication"),
            score("pq_work_ethic_reliability"),
            score("pq_integrity_accountability"),
            score("pq_teachability_receptiveness"),
            score("pq_documentation"),
            score("pq_leadership_relationships"),
            score("iq_knowledge_base"),
            score("iq_analytical_thinking"),
            score("iq_commitment_learning"),
            score("iq_clinical_flexibility"),
            score("iq_performance_for_level"),
            score("eq_avg"),
            score("pq_avg"),
            score("iq_avg"),
            sa.Column("concerns_goals", sa.Text(), nullable=True),
            sa.Column(
                "created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("respondent_id", "resident_id", name="uq_structured_ratings_respondent_resident"),
        )
        op.create_index("idx_structured_ratings_resident", "structured_ratings", ["resident_id"])
        op.create_index("idx_structured_ratings_period", "structured_ratings", ["period_label"])

    if "survey_resident_assignments" not in existing_tables:
        op.create_table(
            "survey_resident_assignments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("survey_id", sa.Integer(), sa.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "respondent_id",
                sa.Integer(),
                sa.ForeignKey("survey_respondents.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("resident_id", sa.Integer(), sa.ForeignKey("residents.id", ondelete="CASCADE"), nullable=False),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column(
                "structured_rating_id",
                sa.Integer(),
                sa.ForeignKey("structured_ratings.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.UniqueConstraint("survey_id", "respondent_id", "resident_id", name="uq_survey_assignments_triplet"),
        )

    # ---------- pulse check ----------
    if "pulsecheck_sites" not in existing_tables:
        op.create_table(
            "pulsecheck_sites",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "health_system_id", sa.Integer(), sa.ForeignKey("health_systems.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("region", sa.String(128), nullable=True),
            sa.Column("address", sa.String(500), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
        )

    if "pulsecheck_departments" not in existing_tables:
        op.create_table(
            "pulsecheck_departments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("site_id", sa.Integer(), sa.ForeignKey("pulsecheck_sites.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("specialty", sa.String(128), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
        )

    if "pulsecheck_directors" not in existing_tables:
        op.create_table(
            "pulsecheck_directors",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("role", sa.String(64), nullable=False, server_default="medical_director"),
            sa.Column(
                "department_id",
                sa.Integer(),
                sa.ForeignKey("pulsecheck_departments.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
        )

    if "pulsecheck_providers" not in existing_tables:
        op.create_table(
            "pulsecheck_providers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("provider_type", sa.String(32), nullable=False),
            sa.Column("credential", sa.String(64), nullable=True),
            sa.Column(
                "primary_department_id",
                sa.Integer(),
                sa.ForeignKey("pulsecheck_departments.id", ondelete="RESTRICT"),
                nullable=False,
            ),
            sa.Column(
                "primary_director_id",
                sa.Integer(),
                sa.ForeignKey("pulsecheck_directors.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("hire_date", sa.Date(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "pulsecheck_cycles" not in existing_tables:
        op.create_table(
            "pulsecheck_cycles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("due_date", sa.Date(), nullable=False),
            sa.Column("reminder_cadence", sa.String(32), nullable=False, server_default="weekly"),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            sa.Column("created_by", sa.String(320), nullable=True),
            _created_at(),
        )

    if "pulsecheck_ratings" not in existing_tables:
        item = lambda name: sa.Column(name, sa.Integer(), nullable=True)  # noqa: E731
        op.create_table(
            "pulsecheck_ratings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "provider_id", sa.Integer(), sa.ForeignKey("pulsecheck_providers.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column(
                "director_id", sa.Integer(), sa.ForeignKey("pulsecheck_directors.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("cycle_id", sa.Integer(), sa.ForeignKey("pulsecheck_cycles.id", ondelete="CASCADE"), nullable=True),
            item("eq_empathy_rapport"),
            item("eq_communication"),
            item("eq_stress_management"),
            item("eq_self_awareness"),
            item("eq_adaptability"),
            item("pq_reliability"),
            item("pq_integrity"),
            item("pq_teachability"),
            item("pq_documentation"),
            item("pq_leadership"),
            item("iq_clinical_management"),
            item("iq_evidence_based"),
            item("iq_procedural"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("strengths", sa.Text(), nullable=True),
            sa.Column("areas_for_improvement", sa.Text(), nullable=True),
            sa.Column("goals", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column("started_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint(
                "cycle_id", "provider_id", "director_id", name="uq_pulsecheck_ratings_cycle_provider_director"
            ),
        )
        op.create_index("idx_pulsecheck_ratings_status", "pulsecheck_ratings", ["status"])

    if "pulsecheck_reminders" not in existing_tables:
        op.create_table(
            "pulsecheck_reminders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("cycle_id", sa.Integer(), sa.ForeignKey("pulsecheck_cycles.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "director_id", sa.Integer(), sa.ForeignKey("pulsecheck_directors.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("pending_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completed_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("email_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("sent_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    # ---------- interviews ----------
    if "interview_sessions" not in existing_tables:
        op.create_table(
            "interview_sessions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("session_name", sa.String(255), nullable=False),
            sa.Column("session_type", sa.String(32), nullable=False, server_default="individual"),
            sa.Column("session_date", sa.Date(), nullable=True),
            sa.Column("program_id", sa.Integer(), sa.ForeignKey("programs.id", ondelete="SET NULL"), nullable=True),
            sa.Column("creator_email", sa.String(320), nullable=False),
            sa.Column("share_token", sa.String(16), nullable=False, unique=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            _created_at(),
        )

    if "interview_session_interviewers" not in existing_tables:
        op.create_table(
            "interview_session_interviewers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "session_id", sa.Integer(), sa.ForeignKey("interview_sessions.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("interviewer_email", sa.String(320), nullable=False),
            sa.Column("interviewer_name", sa.String(255), nullable=True),
            sa.Column("role", sa.String(32), nullable=False, server_default="interviewer"),
            _created_at(),
            sa.UniqueConstraint("session_id", "interviewer_email", name="uq_interviewers_session_email"),
        )

    if "interview_candidates" not in existing_tables:
        op.create_table(
            "interview_candidates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "session_id", sa.Integer(), sa.ForeignKey("interview_sessions.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("candidate_name", sa.String(255), nullable=False),
            sa.Column("candidate_email", sa.String(320), nullable=True),
            sa.Column("medical_school", sa.String(255), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("eq_total", sa.Float(), nullable=True),
            sa.Column("pq_total", sa.Float(), nullable=True),
            sa.Column("iq_total", sa.Float(), nullable=True),
            sa.Column("interview_total", sa.Float(), nullable=True),
            _created_at(),
        )

    if "interview_ratings" not in existing_tables:
        op.create_table(
            "interview_ratings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "candidate_id", sa.Integer(), sa.ForeignKey("interview_candidates.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("interviewer_email", sa.String(320), nullable=False),
            sa.Column("interviewer_name", sa.String(255), nullable=True),
            sa.Column(
                "interviewer_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("eq_score", sa.Integer(), nullable=True),
            sa.Column("pq_score", sa.Integer(), nullable=True),
            sa.Column("iq_score", sa.Integer(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("questions_used", sa.JSON(), nullable=False),
            sa.Column("is_revised", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("revised_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("candidate_id", "interviewer_email", name="uq_interview_ratings_candidate_interviewer"),
        )

    # ---------- access requests ----------
    if "access_requests" not in existing_tables:
        op.create_table(
            "access_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("personal_email", sa.String(320), nullable=False),
            sa.Column("institutional_email", sa.String(320), nullable=True),
            sa.Column("full_name", sa.String(255), nullable=False),
            sa.Column("phone", sa.String(64), nullable=True),
            sa.Column("requested_role", sa.String(64), nullable=False, server_default="resident"),
            sa.Column(
                "health_system_id", sa.Integer(), sa.ForeignKey("health_systems.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("program_id", sa.Integer(), sa.ForeignKey("programs.id", ondelete="SET NULL"), nullable=True),
            sa.Column("graduation_year", sa.Integer(), nullable=True),
            sa.Column("medical_school", sa.String(255), nullable=True),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column(
                "reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            sa.Column("created_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _created_at(),
        )
        op.create_index("idx_access_requests_status", "access_requests", ["status"])
        op.create_index("idx_access_requests_personal_email", "access_requests", ["personal_email"])


def downgrade() -> None:
    for table in (
        "access_requests",
        "interview_ratings",
        "interview_candidates",
        "interview_session_interviewers",
        "interview_sessions",
        "pulsecheck_reminders",
        "pulsecheck_ratings",
        "pulsecheck_cycles",
        "pulsecheck_providers",
        "pulsecheck_directors",
        "pulsecheck_departments",
        "pulsecheck_sites",
        "survey_resident_assignments",
        "structured_ratings",
        "survey_respondents",
        "surveys",
        "audit_events",
        "faculty",
        "residents",
        "organization_memberships",
        "academic_classes",
        "programs",
        "health_systems",
        "api_tokens",
        "users",
    ):
        op.drop_table(table)
