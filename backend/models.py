import enum
import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, Integer, ForeignKey, Table, Column, Enum, Index, Text, UniqueConstraint, DateTime, func

class Base(DeclarativeBase):
    pass


def new_uuid() -> str:
    return str(uuid.uuid4())


# Association table for many-to-many Issue-Label relationship
issue_labels = Table(
    "issue_labels", Base.metadata,
    Column("issue_id", String(36), ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True),
    Column("label_id", String(36), ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True)
)

class WindowType(enum.Enum):
    MINUTE = "minute"
    DAY = "day"


# === Rate limiting ===
# One row per (user, window type, window start); request_count only grows.
# Rows for past windows are left in place.
class AIRateLimit(Base):
    __tablename__ = "ai_rate_limits"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    window_type: Mapped[WindowType] = mapped_column(
        Enum(WindowType, name="rate_window_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __table_args__ = (
        UniqueConstraint("user_id", "window_type", "window_start", name="uq_ai_rate_limits_window"),
    )


# === Tracker entities ===
# Only the columns the AI features read, or whose changes invalidate cached results.
class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    comments = relationship("Comment", back_populates="user")

class Label(Base):
    __tablename__ = "labels"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_labels_project_name"),
    )

    issues = relationship("Issue", secondary=issue_labels, back_populates="labels")

class Issue(Base):
    __tablename__ = "issues"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Backlog")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    __table_args__ = (
        Index("ix_issues_project_id", "project_id"),
    )

    labels: Mapped[List["Label"]] = relationship("Label", secondary=issue_labels, back_populates="issues")
    comments: Mapped[List["Comment"]] = relationship(
        "Comment", back_populates="issue", order_by="Comment.created_at", cascade="all, delete-orphan"
    )

class Comment(Base):
    __tablename__ = "comments"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    issue_id: Mapped[str] = mapped_column(String(36), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    __table_args__ = (
        Index("ix_comments_issue_created", "issue_id", "created_at"),
    )

    issue = relationship("Issue", back_populates="comments")
    user = relationship("User", back_populates="comments")
