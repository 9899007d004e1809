from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.eqpqiq.models import Base


PULSE_EQ_ITEMS = (
    "eq_empathy_rapport",
    "eq_communication",
    "eq_stress_management",
    "eq_self_awareness",
    "eq_adaptability",
)
PULSE_PQ_ITEMS = (
    "pq_reliability",
    "pq_integrity",
    "pq_teachability",
    "pq_documentation",
    "pq_leadership",
)
PULSE_IQ_ITEMS = (
    "iq_clinical_management",
    "iq_evidence_based",
    "iq_procedural",
)
PULSE_ITEMS = PULSE_EQ_ITEMS + PULSE_PQ_ITEMS + PULSE_IQ_ITEMS


class PulseSite(Base):
    __tablename__ = "pulsecheck_sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    health_system_id: Mapped[int | None] = mapped_column(ForeignKey("health_systems.id", ondelete="SET NULL"), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    region: Mapped[str | None] = mapped_column(String(128), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class PulseDepartment(Base):
    __tablename__ = "pulsecheck_departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("pulsecheck_sites.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    specialty: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class PulseDirector(Base):
    __tablename__ = "pulsecheck_directors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(64), nullable=False, default="medical_director")
    department_id: Mapped[int | None] = mapped_column(
        ForeignKey("pulsecheck_departments.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class PulseProvider(Base):
    __tablename__ = "pulsecheck_providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    provider_type: Mapped[str] = mapped_column(String(32), nullable=False)  # physician|apc
    credential: Mapped[str | None] = mapped_column(String(64), nullable=True)
    primary_department_id: Mapped[int] = mapped_column(
        ForeignKey("pulsecheck_departments.id", ondelete="RESTRICT"), nullable=False
    )
    primary_director_id: Mapped[int | None] = mapped_column(
        ForeignKey("pulsecheck_directors.id", ondelete="SET NULL"), nullable=True
    )
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    department: Mapped[PulseDepartment] = relationship(lazy="joined")
    director: Mapped[PulseDirector | None] = relationship(lazy="joined")


class PulseCycle(Base):
    __tablename__ = "pulsecheck_cycles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    reminder_cadence: Mapped[str] = mapped_column(String(32), nullable=False, default="weekly")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    created_by: Mapped[str | None] = mapped_column(String(320), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class PulseRating(Base):
    """One director's review of one provider within a cycle."""

    __tablename__ = "pulsecheck_ratings"
    __table_args__ = (
        UniqueConstraint("cycle_id", "provider_id", "director_id", name="uq_pulsecheck_ratings_cycle_provider_director"),
        Index("idx_pulsecheck_ratings_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("pulsecheck_providers.id", ondelete="CASCADE"), nullable=False)
    director_id: Mapped[int] = mapped_column(ForeignKey("pulsecheck_directors.id", ondelete="CASCADE"), nullable=False)
    cycle_id: Mapped[int | None] = mapped_column(ForeignKey("pulsecheck_cycles.id", ondelete="CASCADE"), nullable=True)

    eq_empathy_rapport: Mapped[int | None] = mapped_column(Integer, nullable=True)
    eq_communication: Mapped[int | None] = mapped_column(Integer, nullable=True)
    eq_stress_management: Mapped[int | None] = mapped_column(Integer, nullable=True)
    eq_self_awareness: Mapped[int | None] = mapped_column(Integer, nullable=True)
    eq_adaptability: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pq_reliability: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pq_integrity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pq_teachability: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pq_documentation: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pq_leadership: Mapped[int | None] = mapped_column(Integer, nullable=True)
    iq_clinical_management: Mapped[int | None] = mapped_column(Integer, nullable=True)
    iq_evidence_based: Mapped[int | None] = mapped_column(Integer, nullable=True)
    iq_procedural: Mapped[int | None] = mapped_column(Integer, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    strengths: Mapped[str | None] = mapped_column(Text, nullable=True)
    areas_for_improvement: Mapped[str | None] = mapped_column(Text, nullable=True)
    goals: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    provider: Mapped[PulseProvider] = relationship(lazy="joined")
    director: Mapped[PulseDirector] = relationship(lazy="joined")

    @staticmethod
    def _avg(values: list[int | None]) -> float | None:
        present = [v for v in values if v is not None]
        if not present:
            return None
        return round(sum(present) / len(present), 2)

    @property
    def eq_total(self) -> float | None:
        return self._avg([getattr(self, k) for k in PULSE_EQ_ITEMS])

    @property
    def pq_total(self) -> float | None:
        return self._avg([getattr(self, k) for k in PULSE_PQ_ITEMS])

    @property
    def iq_total(self) -> float | None:
        return self._avg([getattr(self, k) for k in PULSE_IQ_ITEMS])

    @property
    def overall_total(self) -> float | None:
        return self._avg([self.eq_total, self.pq_total, self.iq_total])  # type: ignore[list-item]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "provider_name": self.provider.name if self.provider else None,
            "director_id": self.director_id,
            "director_name": self.director.name if self.director else None,
            "cycle_id": self.cycle_id,
            **{k: getattr(self, k) for k in PULSE_ITEMS},
            "eq_total": self.eq_total,
            "pq_total": self.pq_total,
            "iq_total": self.iq_total,
            "overall_total": self.overall_total,
            "notes": self.notes,
            "strengths": self.strengths,
            "areas_for_improvement": self.areas_for_improvement,
            "goals": self.goals,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class PulseReminder(Base):
    __tablename__ = "pulsecheck_reminders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cycle_id: Mapped[int] = mapped_column(ForeignKey("pulsecheck_cycles.id", ondelete="CASCADE"), nullable=False)
    director_id: Mapped[int] = mapped_column(ForeignKey("pulsecheck_directors.id", ondelete="CASCADE"), nullable=False)
    pending_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
