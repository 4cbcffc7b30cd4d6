from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.formhub.models import Base

if TYPE_CHECKING:
    from app.formhub.modules.responses.models import FormResponse


QUESTION_TYPES = ("string", "text", "radio", "checkbox", "numeric")
CHOICE_TYPES = frozenset({"radio", "checkbox"})
NUMERIC_TYPES = frozenset({"numeric"})


class Template(Base):
    __tablename__ = "templates"
    __table_args__ = (
        Index("idx_templates_user_id", "user_id"),
        Index("idx_templates_topic", "topic"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    topic: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    image_key: Mapped[str | None] = mapped_column(String(512), nullable=True)  # storage key, not a URL

    # Cached counters; updated with single-statement increments.
    likes_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    questions: Mapped[list["Question"]] = relationship(
        "Question",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="Question.position",
        lazy="selectin",
    )
    access_rules: Mapped[list["AccessRule"]] = relationship(
        "AccessRule",
        back_populates="template",
        cascade="all, delete-orphan",
        lazy="select",
    )
    likes: Mapped[list["Like"]] = relationship("Like", cascade="all, delete-orphan", lazy="select")
    comments: Mapped[list["Comment"]] = relationship("Comment", cascade="all, delete-orphan", lazy="select")
    responses: Mapped[list["FormResponse"]] = relationship(
        "FormResponse",
        back_populates="template",
        cascade="all, delete-orphan",
        lazy="select",
    )

    def to_dict(self, *, include_questions: bool = False, include_hidden: bool = False) -> dict:
        d = {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "topic": self.topic,
            "tags": list(self.tags or []),
            "has_image": bool(self.image_key),
            "likes_count": self.likes_count,
            "comment_count": self.comment_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_questions:
            d["questions"] = [q.to_dict() for q in self.questions if include_hidden or q.visible]
        return d


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        Index("idx_questions_template_id", "template_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("templates.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    type: Mapped[str] = mapped_column(String(32), nullable=False)  # see QUESTION_TYPES
    value: Mapped[str] = mapped_column(Text, nullable=False)  # prompt text
    options: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    template: Mapped[Template] = relationship("Template", back_populates="questions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "position": self.position,
            "type": self.type,
            "value": self.value,
            "options": list(self.options or []),
            "visible": bool(self.visible),
        }


class AccessRule(Base):
    """Explicit allow/deny entry for one user on one template."""

    __tablename__ = "access_settings"
    __table_args__ = (
        UniqueConstraint("template_id", "user_id", name="uq_access_settings_template_user"),
        Index("idx_access_settings_template_id", "template_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("templates.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    can_access: Mapped[bool] = mapped_column(Boolean, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    template: Mapped[Template] = relationship("Template", back_populates="access_rules")

    def to_dict(self) -> dict:
        return {
            "template_id": self.template_id,
            "user_id": self.user_id,
            "can_access": bool(self.can_access),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Like(Base):
    __tablename__ = "likes"
    __table_args__ = (
        UniqueConstraint("user_id", "template_id", name="uq_likes_user_template"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    template_id: Mapped[int] = mapped_column(ForeignKey("templates.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Comment(Base):
    __tablename__ = "comments"
    __table_args__ = (
        Index("idx_comments_template_id", "template_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("templates.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
