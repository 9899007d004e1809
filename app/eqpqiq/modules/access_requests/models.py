from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.eqpqiq.models import Base


class AccessRequest(Base):
    __tablename__ = "access_requests"
    __table_args__ = (
        Index("idx_access_requests_status", "status"),
        Index("idx_access_requests_personal_email", "personal_email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    personal_email: Mapped[str] = mapped_column(String(320), nullable=False)
    institutional_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    requested_role: Mapped[str] = mapped_column(String(64), nullable=False, default="resident")
    health_system_id: Mapped[int | None] = mapped_column(ForeignKey("health_systems.id", ondelete="SET NULL"), nullable=True)
    program_id: Mapped[int | None] = mapped_column(ForeignKey("programs.id", ondelete="SET NULL"), nullable=True)
    graduation_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    medical_school: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending|approved|rejected
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "personal_email": self.personal_email,
            "institutional_email": self.institutional_email,
            "full_name": self.full_name,
            "phone": self.phone,
            "requested_role": self.requested_role,
            "health_system_id": self.health_system_id,
            "program_id": self.program_id,
            "graduation_year": self.graduation_year,
            "medical_school": self.medical_school,
            "reason": self.reason,
            "status": self.status,
            "reviewed_by_user_id": self.reviewed_by_user_id,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "admin_notes": self.admin_notes,
            "created_user_id": self.created_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
