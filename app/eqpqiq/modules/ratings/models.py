from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.eqpqiq.models import Base

if TYPE_CHECKING:
    from app.eqpqiq.models import Faculty, Resident


EQ_ATTRIBUTES = (
    "eq_empathy_positive_interactions",
    "eq_adaptability_self_awareness",
    "eq_stress_management_resilience",
    "eq_curiosity_growth_mindset",
    "eq_effectiveness_communication",
)
PQ_ATTRIBUTES = (
    "pq_work_ethic_reliability",
    "pq_integrity_accountability",
    "pq_teachability_receptiveness",
    "pq_documentation",
    "pq_leadership_relationships",
)
IQ_ATTRIBUTES = (
    "iq_knowledge_base",
    "iq_analytical_thinking",
    "iq_commitment_learning",
    "iq_clinical_flexibility",
    "iq_performance_for_level",
)
ALL_ATTRIBUTES = EQ_ATTRIBUTES + PQ_ATTRIBUTES + IQ_ATTRIBUTES
PILLARS = {"eq": EQ_ATTRIBUTES, "pq": PQ_ATTRIBUTES, "iq": IQ_ATTRIBUTES}


class StructuredRating(Base):
    """
    EQ/PQ/IQ evaluation of one resident by one rater for one period.
    Ratings collected through a survey carry `respondent_id`; (respondent, resident)
    is unique so re-submission updates in place.
    """

    __tablename__ = "structured_ratings"
    __table_args__ = (
        UniqueConstraint("respondent_id", "resident_id", name="uq_structured_ratings_respondent_resident"),
        Index("idx_structured_ratings_resident", "resident_id"),
        Index("idx_structured_ratings_period", "period_label"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    resident_id: Mapped[int] = mapped_column(ForeignKey("residents.id", ondelete="CASCADE"), nullable=False)
    rater_type: Mapped[str] = mapped_column(String(32), nullable=False)  # faculty|core_faculty|teaching_faculty|self
    faculty_id: Mapped[int | None] = mapped_column(ForeignKey("faculty.id", ondelete="SET NULL"), nullable=True)
    survey_id: Mapped[int | None] = mapped_column(ForeignKey("surveys.id", ondelete="SET NULL"), nullable=True)
    respondent_id: Mapped[int | None] = mapped_column(
        ForeignKey("survey_respondents.id", ondelete="SET NULL"), nullable=True
    )

    evaluation_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    period_label: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pgy_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    period: Mapped[str | None] = mapped_column(String(16), nullable=True)  # Fall|Spring

    eq_empathy_positive_interactions: Mapped[float | None] = mapped_column(Float, nullable=True)
    eq_adaptability_self_awareness: Mapped[float | None] = mapped_column(Float, nullable=True)
    eq_stress_management_resilience: Mapped[float | None] = mapped_column(Float, nullable=True)
    eq_curiosity_growth_mindset: Mapped[float | None] = mapped_column(Float, nullable=True)
    eq_effectiveness_communication: Mapped[float | None] = mapped_column(Float, nullable=True)

    pq_work_ethic_reliability: Mapped[float | None] = mapped_column(Float, nullable=True)
    pq_integrity_accountability: Mapped[float | None] = mapped_column(Float, nullable=True)
    pq_teachability_receptiveness: Mapped[float | None] = mapped_column(Float, nullable=True)
    pq_documentation: Mapped[float | None] = mapped_column(Float, nullable=True)
    pq_leadership_relationships: Mapped[float | None] = mapped_column(Float, nullable=True)

    iq_knowledge_base: Mapped[float | None] = mapped_column(Float, nullable=True)
    iq_analytical_thinking: Mapped[float | None] = mapped_column(Float, nullable=True)
    iq_commitment_learning: Mapped[float | None] = mapped_column(Float, nullable=True)
    iq_clinical_flexibility: Mapped[float | None] = mapped_column(Float, nullable=True)
    iq_performance_for_level: Mapped[float | None] = mapped_column(Float, nullable=True)

    eq_avg: Mapped[float | None] = mapped_column(Float, nullable=True)
    pq_avg: Mapped[float | None] = mapped_column(Float, nullable=True)
    iq_avg: Mapped[float | None] = mapped_column(Float, nullable=True)

    concerns_goals: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    resident: Mapped["Resident"] = relationship(lazy="joined")
    faculty: Mapped["Faculty | None"] = relationship(lazy="joined")

    @property
    def overall_avg(self) -> float | None:
        vals = [v for v in (self.eq_avg, self.pq_avg, self.iq_avg) if v is not None]
        if not vals:
            return None
        return round(sum(vals) / len(vals), 2)

    def scores(self) -> dict[str, float | None]:
        return {attr: getattr(self, attr) for attr in ALL_ATTRIBUTES}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "resident_id": self.resident_id,
            "rater_type": self.rater_type,
            "faculty_id": self.faculty_id,
            "survey_id": self.survey_id,
            "evaluation_date": self.evaluation_date.isoformat() if self.evaluation_date else None,
            "period_label": self.period_label,
            "pgy_level": self.pgy_level,
            "period": self.period,
            **self.scores(),
            "eq_avg": self.eq_avg,
            "pq_avg": self.pq_avg,
            "iq_avg": self.iq_avg,
            "concerns_goals": self.concerns_goals,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
