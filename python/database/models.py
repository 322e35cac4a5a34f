"""
SQLAlchemy ORM Models for the Conflict Check System

Tables:
1. cases - Stored cases with client/opponent parties and affiliate lists
2. case_lawyers - Lawyers assigned to a case (many-to-many)
3. users - Lawyers and other staff (display names for conflict reasons)
4. conflict_checks - History of checks run against stored cases

Affiliate lists (related companies, founders, ...) are kept as JSON text so
that the candidate prefilter can search them with LIKE on any backend.
search_text holds the lowercased, normalized names so name matching does not
depend on the backend folding non-ASCII case.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, event
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship
from sqlalchemy.sql import func

from conflict_models import infer_party_kind, safe_json_parse
from transliterate import normalize_for_comparison

# Base class for all models
Base = declarative_base()

AFFILIATE_COLUMNS = (
    'related_companies',
    'related_individuals',
    'founders',
    'directors',
    'beneficiaries',
)


def encode_affiliates(entries: Optional[List[Any]]) -> Optional[str]:
    """Serialize an affiliate list for storage (readable Cyrillic, no escapes)"""
    if not entries:
        return None
    return json.dumps(entries, ensure_ascii=False)


class User(Base):
    """Staff member; lawyers are referenced from case_lawyers"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default='lawyer')

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"


class Case(Base):
    """A stored legal case"""
    __tablename__ = "cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    client_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True, index=True)
    client_type: Mapped[str] = mapped_column(String(20), nullable=False)
    client_inn: Mapped[Optional[str]] = mapped_column(String(12), nullable=True, index=True)
    client_pinfl: Mapped[Optional[str]] = mapped_column(String(14), nullable=True, index=True)

    opponent_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True, index=True)
    opponent_type: Mapped[str] = mapped_column(String(20), nullable=False)
    opponent_inn: Mapped[Optional[str]] = mapped_column(String(12), nullable=True, index=True)
    opponent_pinfl: Mapped[Optional[str]] = mapped_column(String(14), nullable=True, index=True)

    # JSON text lists
    related_companies: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    related_individuals: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    founders: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    directors: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    beneficiaries: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # lowercase normalized party and affiliate names, kept in step by fill_derived_columns
    search_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    lawyers: Mapped[List["CaseLawyer"]] = relationship(
        "CaseLawyer",
        back_populates="case",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def to_row(self) -> Dict[str, Any]:
        """Plain mapping consumed by conflict_models.case_snapshot_from_row"""
        row = {
            'id': self.id,
            'case_number': self.case_number,
            'lawyer_ids': [link.lawyer_id for link in self.lawyers],
        }
        for prefix in ('client', 'opponent'):
            for suffix in ('name', 'type', 'inn', 'pinfl'):
                key = f'{prefix}_{suffix}'
                row[key] = getattr(self, key)
        for column in AFFILIATE_COLUMNS:
            row[column] = getattr(self, column)
        return row

    def party_names(self) -> List[str]:
        """Client, opponent and affiliate names as stored"""
        names = [self.client_name, self.opponent_name]
        for column in AFFILIATE_COLUMNS:
            entries = safe_json_parse(getattr(self, column), [])
            if not isinstance(entries, list):
                entries = [entries]
            for entry in entries:
                names.append(entry.get('name') if isinstance(entry, dict) else entry)
        return [name for name in names if isinstance(name, str) and name.strip()]

    def refresh_search_text(self) -> None:
        normalized = (normalize_for_comparison(name) for name in self.party_names())
        self.search_text = ' | '.join(n for n in normalized if n) or None

    def __repr__(self) -> str:
        return f"<Case(id={self.id}, number='{self.case_number}')>"


class CaseLawyer(Base):
    """Assignment of a lawyer to a case"""
    __tablename__ = "case_lawyers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False
    )
    lawyer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )

    case: Mapped["Case"] = relationship("Case", back_populates="lawyers")
    lawyer: Mapped["User"] = relationship("User")

    __table_args__ = (
        UniqueConstraint('case_id', 'lawyer_id', name='uq_case_lawyer'),
        Index('ix_case_lawyers_lawyer', 'lawyer_id'),
    )

    def __repr__(self) -> str:
        return f"<CaseLawyer(case_id={self.case_id}, lawyer_id={self.lawyer_id})>"


class ConflictCheck(Base):
    """
    Recorded conflict check of a stored case.

    Immutable - one row per check run.
    """
    __tablename__ = "conflict_checks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    conflict_level: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    conflict_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # JSON list of case ids
    conflicting_cases: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    checked_by: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    checker: Mapped[Optional["User"]] = relationship("User")

    __table_args__ = (
        Index('ix_conflict_checks_case_time', 'case_id', 'checked_at'),
    )

    def __repr__(self) -> str:
        return f"<ConflictCheck(id={self.id}, case_id={self.case_id}, level='{self.conflict_level}')>"


@event.listens_for(Case, 'before_insert')
@event.listens_for(Case, 'before_update')
def fill_derived_columns(mapper, connection, target: Case) -> None:
    """Fill missing party types from the stored identifiers and rebuild search_text"""
    for prefix in ('client', 'opponent'):
        if not getattr(target, f'{prefix}_type'):
            kind = infer_party_kind(None, getattr(target, f'{prefix}_inn'), getattr(target, f'{prefix}_pinfl'))
            setattr(target, f'{prefix}_type', kind.value)
    target.refresh_search_text()
