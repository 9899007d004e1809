from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.eqpqiq.models import Base


class InterviewSession(Base):
    __tablename__ = "interview_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_name: Mapped[str] = mapped_column(String(255), nullable=False)
    session_type: Mapped[str] = mapped_column(String(32), nullable=False, default="individual")  # individual|group
    session_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    program_id: Mapped[int | None] = mapped_column(ForeignKey("programs.id", ondelete="SET NULL"), nullable=True)
    creator_email: Mapped[str] = mapped_column(String(320), nullable=False)
    share_token: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    candidates: Mapped[list["InterviewCandidate"]] = relationship(
        back_populates="session",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="InterviewCandidate.sort_order",
    )
    interviewers: Mapped[list["InterviewSessionInterviewer"]] = relationship(
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_name": self.session_name,
            "session_type": self.session_type,
            "session_date": self.session_date.isoformat() if self.session_date else None,
            "program_id": self.program_id,
            "creator_email": self.creator_email,
            "share_token": self.share_token,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class InterviewSessionInterviewer(Base):
    __tablename__ = "interview_session_interviewers"
    __table_args__ = (UniqueConstraint("session_id", "interviewer_email", name="uq_interviewers_session_email"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("interview_sessions.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    interviewer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    interviewer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="interviewer")  # program_director|coordinator|interviewer|resident
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class InterviewCandidate(Base):
    __tablename__ = "interview_candidates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("interview_sessions.id", ondelete="CASCADE"), nullable=False)
    candidate_name: Mapped[str] = mapped_column(String(255), nullable=False)
    candidate_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    medical_school: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    eq_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    pq_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    iq_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    interview_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    session: Mapped[InterviewSession] = relationship(back_populates="candidates")
    ratings: Mapped[list["InterviewRating"]] = relationship(
        back_populates="candidate",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "candidate_name": self.candidate_name,
            "candidate_email": self.candidate_email,
            "medical_school": self.medical_school,
            "sort_order": self.sort_order,
            "eq_total": self.eq_total,
            "pq_total": self.pq_total,
            "iq_total": self.iq_total,
            "interview_total": self.interview_total,
        }


class InterviewRating(Base):
    __tablename__ = "interview_ratings"
    __table_args__ = (UniqueConstraint("candidate_id", "interviewer_email", name="uq_interview_ratings_candidate_interviewer"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    candidate_id: Mapped[int] = mapped_column(ForeignKey("interview_candidates.id", ondelete="CASCADE"), nullable=False)
    interviewer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    interviewer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    interviewer_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    eq_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pq_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    iq_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    questions_used: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    is_revised: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revised_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    candidate: Mapped[InterviewCandidate] = relationship(back_populates="ratings")

    @property
    def total(self) -> int | None:
        if self.eq_score is None or self.pq_score is None or self.iq_score is None:
            return None
        return self.eq_score + self.pq_score + self.iq_score

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "candidate_id": self.candidate_id,
            "interviewer_email": self.interviewer_email,
            "interviewer_name": self.interviewer_name,
            "eq_score": self.eq_score,
            "pq_score": self.pq_score,
            "iq_score": self.iq_score,
            "total": self.total,
            "notes": self.notes,
            "questions_used": self.questions_used,
            "is_revised": self.is_revised,
            "revised_at": self.revised_at.isoformat() if self.revised_at else None,
        }
