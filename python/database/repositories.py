"""
Repository Pattern for Conflict Check Database Operations

Provides the case store queried by the conflict check service, plus the
small write operations needed to seed cases and record check history.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, or_
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from conflict_models import CaseSnapshot, ConflictReport, case_snapshot_from_row
from database.models import (
    AFFILIATE_COLUMNS,
    Case,
    CaseLawyer,
    ConflictCheck,
    User,
    encode_affiliates,
)
from database.monitoring import query_timer, timed_query
from transliterate import LEGAL_FORMS, normalize_for_comparison, strip_legal_form

logger = logging.getLogger(__name__)

# Name tokens shorter than this, and legal-form tokens, are too common to prefilter on
MIN_TOKEN_LENGTH = 3


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class CaseNotFoundError(RepositoryError):
    """Raised when a case is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate record."""
    pass


def name_tokens(names: Sequence[str]) -> List[str]:
    """Lowercase search tokens for the supplied names

    Every name contributes its significant tokens; a name made only of
    short or legal-form tokens contributes its whole normalized form
    instead, so no name is left without a token. A token containing
    another one is dropped since the shorter token already matches it.
    """
    tokens = set()
    for name in names:
        normalized = normalize_for_comparison(name)
        if not normalized:
            continue
        significant = [
            token for token in normalized.split()
            if len(token) >= MIN_TOKEN_LENGTH and token not in LEGAL_FORMS
        ]
        tokens.update(significant or [strip_legal_form(normalized)])
    kept = [t for t in tokens if not any(other != t and other in t for other in tokens)]
    return sorted(kept, key=lambda t: (-len(t), t))


def _escape_like(value: str) -> str:
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


# ============================================
# CASE REPOSITORY
# ============================================

class SqlCaseRepository:
    """Case store backed by the cases / case_lawyers / users tables."""

    def __init__(self, session: Session):
        self.session = session

    def fetch_candidate_cases(
        self,
        identifiers: Sequence[str],
        names: Sequence[str],
        exclude_case_id: Optional[int] = None,
        limit: int = 10000
    ) -> List[CaseSnapshot]:
        """
        Fetch stored cases that may conflict with a candidate.

        The filter is a superset: any client/opponent identifier equal to one
        of identifiers, any affiliate list containing an identifier, or a
        search_text containing a token of the supplied names (see
        name_tokens). Tokens and search_text are both lowercased in Python,
        so matching is the same on every backend. The rule engine makes
        the final decision.

        Args:
            identifiers: Normalized company/person identifiers
            names: Name spellings (variants) to search for
            exclude_case_id: Case being checked, never returned
            limit: Maximum number of cases

        Returns:
            List of CaseSnapshot, newest first

        Raises:
            RepositoryError: On database failure
        """
        identifiers = [i for i in dict.fromkeys(identifiers) if i]
        tokens = name_tokens(names)
        if not identifiers and not tokens:
            return []

        conditions = []
        if identifiers:
            conditions.extend([
                Case.client_inn.in_(identifiers),
                Case.client_pinfl.in_(identifiers),
                Case.opponent_inn.in_(identifiers),
                Case.opponent_pinfl.in_(identifiers),
            ])
        for token in tokens:
            conditions.append(Case.search_text.like(f"%{_escape_like(token)}%", escape='\\'))
        affiliate_columns = [getattr(Case, column) for column in AFFILIATE_COLUMNS]
        for identifier in identifiers:
            pattern = f"%{_escape_like(identifier)}%"
            conditions.extend(column.like(pattern, escape='\\') for column in affiliate_columns)

        query = select(Case).where(or_(*conditions))
        if exclude_case_id:
            query = query.where(Case.id != exclude_case_id)
        query = query.order_by(Case.id.desc()).limit(limit)

        try:
            with query_timer("fetch_candidate_cases"):
                cases = list(self.session.execute(query).scalars().all())
        except SQLAlchemyError as e:
            raise RepositoryError(f"Candidate case query failed: {e}") from e

        logger.debug(f"Prefilter returned {len(cases)} cases for {len(identifiers)} identifiers, {len(tokens)} tokens")
        return [case_snapshot_from_row(case.to_row()) for case in cases]

    def fetch_lawyer_names(self, lawyer_ids: Sequence[Any]) -> Dict[Any, str]:
        """
        Load lawyer display names.

        Args:
            lawyer_ids: User ids

        Returns:
            Mapping of id to full name (username when no full name is set)
        """
        ids = [i for i in lawyer_ids if i is not None]
        if not ids:
            return {}
        try:
            with query_timer("fetch_lawyer_names"):
                users = self.session.execute(select(User).where(User.id.in_(ids))).scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Lawyer lookup failed: {e}") from e
        return {user.id: user.display_name for user in users}

    def get_case(self, case_id: int) -> Optional[Case]:
        return self.session.get(Case, case_id)

    def get_case_snapshot(self, case_id: int) -> Optional[CaseSnapshot]:
        """
        Load a stored case with its assigned lawyers.

        Returns:
            CaseSnapshot or None when the case does not exist
        """
        with query_timer("get_case_snapshot"):
            case = self.get_case(case_id)
        if case is None:
            return None
        return case_snapshot_from_row(case.to_row())

    def create_case(self, case_data: Dict[str, Any], lawyer_ids: Sequence[int] = ()) -> Case:
        """
        Create a case.

        Args:
            case_data: Column values; affiliate columns may be given as lists
            lawyer_ids: Assigned lawyer user ids

        Returns:
            Created Case instance
        """
        data = dict(case_data)
        for column in AFFILIATE_COLUMNS:
            if isinstance(data.get(column), list):
                data[column] = encode_affiliates(data[column])

        case = Case(**data)
        case.lawyers = [CaseLawyer(lawyer_id=lawyer_id) for lawyer_id in dict.fromkeys(lawyer_ids)]
        try:
            self.session.add(case)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Could not create case: {e}")

        logger.debug(f"Created case: {case.id} ({case.case_number})")
        return case

    def create_user(self, username: str, full_name: Optional[str] = None, role: str = 'lawyer') -> User:
        user = User(username=username, full_name=full_name, role=role)
        try:
            self.session.add(user)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"User already exists: {username} ({e})")
        return user

    # ----------------------------------------
    # CHECK HISTORY
    # ----------------------------------------

    def record_check(
        self,
        case_id: int,
        report: ConflictReport,
        checked_by: Optional[int] = None
    ) -> ConflictCheck:
        """
        Store the outcome of a check of a stored case.

        Args:
            case_id: Checked case
            report: Conflict report
            checked_by: User who ran the check

        Returns:
            Created ConflictCheck
        """
        record = ConflictCheck(
            case_id=case_id,
            conflict_level=report.level.value,
            conflict_reason='; '.join(report.reasons),
            conflicting_cases=json.dumps(list(report.conflicting_cases)),
            checked_by=checked_by
        )
        self.session.add(record)
        self.session.flush()
        logger.info(f"Recorded conflict check for case {case_id}: {report.level.value}")
        return record

    @timed_query("get_check_history")
    def get_check_history(self, case_id: int) -> List[Dict[str, Any]]:
        """
        Recorded checks of a case, newest first.

        Raises:
            CaseNotFoundError: If the case does not exist
        """
        if self.get_case(case_id) is None:
            raise CaseNotFoundError(f"Case not found: {case_id}")

        query = (
            select(ConflictCheck)
            .where(ConflictCheck.case_id == case_id)
            .options(joinedload(ConflictCheck.checker))
            .order_by(ConflictCheck.checked_at.desc(), ConflictCheck.id.desc())
        )
        records = self.session.execute(query).scalars().all()

        history = []
        for record in records:
            try:
                conflicting = json.loads(record.conflicting_cases or '[]')
            except ValueError:
                logger.warning(f"Malformed conflicting_cases in check {record.id}")
                conflicting = []
            history.append({
                'id': record.id,
                'case_id': record.case_id,
                'conflict_level': record.conflict_level,
                'conflict_reason': record.conflict_reason,
                'conflicting_cases': conflicting,
                'checked_by': record.checked_by,
                'checked_by_name': record.checker.display_name if record.checker else None,
                'checked_at': record.checked_at.isoformat() if record.checked_at else None,
            })
        return history
