"""Submission document model.

The document tree is stored in JSON columns; the keyword set and the disease
categories are normalised into ``submission_keywords`` and
``submission_categories`` so lookups on either are indexed equality joins.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from clinicalforge.db import Base
from clinicalforge.models.enums import FormType, SubmissionStatus


class Submission(Base):
    """One physician form-fill event."""

    __tablename__ = "submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[str] = mapped_column(
        String(36), unique=True, nullable=False, index=True
    )
    collaborator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    form_type: Mapped[FormType] = mapped_column(Enum(FormType), nullable=False)
    status: Mapped[SubmissionStatus] = mapped_column(
        Enum(SubmissionStatus), default=SubmissionStatus.DRAFT, nullable=False, index=True
    )
    # document schema version, e.g. "1.0"
    version: Mapped[str] = mapped_column(String(10), default="1.0", nullable=False)
    # compare-and-swap counter, bumped on every write
    revision: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_synthetic: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    disease_name: Mapped[Optional[str]] = mapped_column(String(255), index=True)

    payload_json: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    validation_json: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    search_index_json: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    advanced_analytics_json: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    metadata_json: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    keywords: Mapped[List["SubmissionKeyword"]] = relationship(
        back_populates="submission", cascade="all, delete-orphan"
    )
    categories: Mapped[List["SubmissionCategory"]] = relationship(
        back_populates="submission", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Submission(submission_id={self.submission_id}, status={self.status.value})>"


class SubmissionKeyword(Base):
    """One lower-cased token from a submission's search index."""

    __tablename__ = "submission_keywords"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_pk: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    keyword: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    submission: Mapped[Submission] = relationship(back_populates="keywords")


class SubmissionCategory(Base):
    """One lower-cased disease category (``diseaseType`` primary or secondary)."""

    __tablename__ = "submission_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_pk: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    submission: Mapped[Submission] = relationship(back_populates="categories")
