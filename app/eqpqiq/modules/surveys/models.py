from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.eqpqiq.models import Base

if TYPE_CHECKING:
    from app.eqpqiq.models import Resident


class Survey(Base):
    __tablename__ = "surveys"
    __table_args__ = (
        Index("idx_surveys_program", "program_id"),
        Index("idx_surveys_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=False)
    class_id: Mapped[int | None] = mapped_column(ForeignKey("academic_classes.id", ondelete="SET NULL"), nullable=True)

    survey_type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    period_label: Mapped[str | None] = mapped_column(String(64), nullable=True)  # e.g. "PGY-2 Fall"
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")

    deadline: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    auto_remind: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    remind_every_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    max_reminders: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    audience_filter: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_by_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    respondents: Mapped[list["SurveyRespondent"]] = relationship(
        back_populates="survey",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="SurveyRespondent.id",
    )

    @property
    def allow_edit_after_submit(self) -> bool:
        return bool((self.settings or {}).get("allow_edit_after_submit"))

    def deadline_passed(self, now: datetime | None = None) -> bool:
        if self.deadline is None:
            return False
        return (now or datetime.utcnow()) > self.deadline


class SurveyRespondent(Base):
    """
    One invited person in a survey. Access is gated by `token`; `status` only
    moves forward: pending -> started -> completed.
    """

    __tablename__ = "survey_respondents"
    __table_args__ = (
        UniqueConstraint("survey_id", "email", name="uq_survey_respondents_survey_email"),
        Index("idx_survey_respondents_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    survey_id: Mapped[int] = mapped_column(ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    email: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str | None] = mapped_column(String(32), nullable=True)  # resident|faculty
    rater_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # core_faculty|teaching_faculty|self
    guidance_min: Mapped[int | None] = mapped_column(Integer, nullable=True)

    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    progress_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reminded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    survey: Mapped[Survey] = relationship(back_populates="respondents", lazy="joined")
    assignments: Mapped[list["SurveyResidentAssignment"]] = relationship(
        back_populates="respondent",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="SurveyResidentAssignment.display_order",
    )


class SurveyResidentAssignment(Base):
    """A (respondent, resident) pair the respondent is expected to rate."""

    __tablename__ = "survey_resident_assignments"
    __table_args__ = (
        UniqueConstraint("survey_id", "respondent_id", "resident_id", name="uq_survey_assignments_triplet"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    survey_id: Mapped[int] = mapped_column(ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False)
    respondent_id: Mapped[int] = mapped_column(ForeignKey("survey_respondents.id", ondelete="CASCADE"), nullable=False)
    resident_id: Mapped[int] = mapped_column(ForeignKey("residents.id", ondelete="CASCADE"), nullable=False)

    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    structured_rating_id: Mapped[int | None] = mapped_column(
        ForeignKey("structured_ratings.id", ondelete="SET NULL"), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    respondent: Mapped[SurveyRespondent] = relationship(back_populates="assignments")
    resident: Mapped["Resident"] = relationship(lazy="joined")
