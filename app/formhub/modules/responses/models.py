from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.formhub.models import Base

if TYPE_CHECKING:
    from app.formhub.modules.templates.models import Template


class FormResponse(Base):
    """One submission against a template. Immutable once written."""

    __tablename__ = "form_responses"
    __table_args__ = (
        Index("idx_form_responses_template_id", "template_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Kept (as NULL) when the responder account is deleted.
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("templates.id", ondelete="CASCADE"), nullable=False)

    # JSON object keyed by question id (as string).
    response_json: Mapped[str] = mapped_column(Text, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    template: Mapped["Template"] = relationship("Template", back_populates="responses")

    def decoded(self) -> dict[str, Any] | None:
        """Parsed answers, or None when the stored payload is not a JSON object."""
        try:
            data = json.loads(self.response_json)
        except (TypeError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "template_id": self.template_id,
            "response_data": self.decoded(),
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }
