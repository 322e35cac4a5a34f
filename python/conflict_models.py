"""
Data structures shared by the matcher, the rule engine and the service

Includes the lenient conversion of a stored case row into a CaseSnapshot.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from identifiers import normalize_company_id, normalize_person_id

logger = logging.getLogger(__name__)


class InvalidCaseInputError(ValueError):
    """Raised when a check request cannot be turned into a case snapshot"""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name


class EntityKind(str, Enum):
    LEGAL = 'legal'
    INDIVIDUAL = 'individual'

    @classmethod
    def parse(cls, value: Any, default: Optional['EntityKind'] = None) -> Optional['EntityKind']:
        """Accept enum members and the common string spellings"""
        if value is None or value == '':
            return default
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        if text in ('legal', 'company', 'organization', 'legal_entity', 'legal-entity'):
            return cls.LEGAL
        if text in ('individual', 'person', 'natural', 'physical'):
            return cls.INDIVIDUAL
        raise InvalidCaseInputError(f"Unknown party type: {value}", field_name='type')


@dataclass(frozen=True)
class PartyDescriptor:
    """A client or opponent: display name, kind and normalized identifiers

    Identifiers are always stored normalized (or None). For a LEGAL party
    only company_id is kept; for an INDIVIDUAL only person_id.
    """
    name: str = ''
    kind: Optional[EntityKind] = None
    company_id: Optional[str] = None
    person_id: Optional[str] = None

    @classmethod
    def from_raw(cls, name: Optional[str] = None, kind: Any = None,
                 company_id: Any = None, person_id: Any = None,
                 **extra: Any) -> 'PartyDescriptor':
        entity_kind = EntityKind.parse(kind)
        company = normalize_company_id(company_id)
        person = normalize_person_id(person_id)
        if entity_kind is EntityKind.LEGAL:
            person = None
        elif entity_kind is EntityKind.INDIVIDUAL:
            company = None
        return cls(
            name=str(name).strip() if name else '',
            kind=entity_kind,
            company_id=company,
            person_id=person,
            **extra
        )

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.company_id:
            return f"INN: {self.company_id}"
        if self.person_id:
            return f"PINFL: {self.person_id}"
        return 'unknown'

    @property
    def identifiers(self) -> Tuple[str, ...]:
        return tuple(i for i in (self.company_id, self.person_id) if i)

    def is_empty(self) -> bool:
        return not (self.name or self.company_id or self.person_id)


class RoleCategory(str, Enum):
    RELATED_COMPANIES = 'related_companies'
    RELATED_INDIVIDUALS = 'related_individuals'
    FOUNDERS = 'founders'
    DIRECTORS = 'directors'
    BENEFICIARIES = 'beneficiaries'


@dataclass(frozen=True)
class RoleRule:
    """How affiliates in one role category are compared"""
    label: str
    match_company_id: bool
    match_person_id: bool
    check_as_party: bool
    cross_entity: bool


ROLE_RULES: Dict[RoleCategory, RoleRule] = {
    RoleCategory.RELATED_COMPANIES: RoleRule('company', True, False, False, False),
    RoleCategory.RELATED_INDIVIDUALS: RoleRule('individual', False, True, True, True),
    RoleCategory.FOUNDERS: RoleRule('founder', True, True, True, True),
    RoleCategory.DIRECTORS: RoleRule('director', False, True, False, True),
    RoleCategory.BENEFICIARIES: RoleRule('beneficiary', False, True, False, True),
}


@dataclass(frozen=True)
class AffiliatedEntity(PartyDescriptor):
    """A related company or person attached to a case in a given role"""
    role: RoleCategory = RoleCategory.RELATED_INDIVIDUALS

    @classmethod
    def from_value(cls, value: Any, role: RoleCategory) -> Optional['AffiliatedEntity']:
        """Build from a plain name or a mapping as stored in a case record

        Mappings may use either name/inn/pinfl/type or
        name/company_id/person_id/kind keys. Returns None for empty values.
        """
        role = RoleCategory(role)
        if value is None:
            return None
        if isinstance(value, str):
            entity = cls.from_raw(name=value, role=role)
        elif isinstance(value, Mapping):
            entity = cls.from_raw(
                name=value.get('name'),
                kind=value.get('kind', value.get('type')),
                company_id=value.get('company_id', value.get('inn')),
                person_id=value.get('person_id', value.get('pinfl')),
                role=role
            )
        else:
            logger.warning("Ignoring unsupported %s entry of type %s", role.value, type(value).__name__)
            return None
        return None if entity.is_empty() else entity


def _build_affiliates(raw: Optional[Mapping[Any, Iterable[Any]]]) -> Dict[RoleCategory, Tuple[AffiliatedEntity, ...]]:
    affiliates: Dict[RoleCategory, Tuple[AffiliatedEntity, ...]] = {}
    for key, values in (raw or {}).items():
        try:
            role = RoleCategory(key)
        except ValueError:
            raise InvalidCaseInputError(f"Unknown affiliate category: {key}", field_name=str(key))
        if isinstance(values, (str, Mapping)):
            values = [values]
        entities = []
        for value in values or ():
            if isinstance(value, AffiliatedEntity):
                entities.append(value)
                continue
            entity = AffiliatedEntity.from_value(value, role)
            if entity is not None:
                entities.append(entity)
        if entities:
            affiliates[role] = tuple(entities)
    return affiliates


@dataclass(frozen=True)
class CaseSnapshot:
    """Normalized view of one case as seen by the rule engine

    case_id 0 denotes an ad-hoc check of a case that is not stored.
    """
    case_id: int = 0
    case_number: Optional[str] = None
    client: PartyDescriptor = field(default_factory=PartyDescriptor)
    opponent: PartyDescriptor = field(default_factory=PartyDescriptor)
    affiliates: Mapping[RoleCategory, Tuple[AffiliatedEntity, ...]] = field(default_factory=dict)
    lawyer_ids: Tuple[Any, ...] = ()

    @classmethod
    def build(cls, client: PartyDescriptor, opponent: PartyDescriptor,
              affiliates: Optional[Mapping[Any, Iterable[Any]]] = None,
              lawyer_ids: Iterable[Any] = (), case_id: int = 0,
              case_number: Optional[str] = None) -> 'CaseSnapshot':
        """Create a snapshot from parties plus raw affiliate lists"""
        return cls(
            case_id=case_id,
            case_number=case_number,
            client=client,
            opponent=opponent,
            affiliates=_build_affiliates(affiliates),
            lawyer_ids=tuple(dict.fromkeys(lawyer_ids or ()))
        )

    @property
    def display_number(self) -> str:
        return self.case_number or str(self.case_id)

    def entities(self, role: RoleCategory) -> Tuple[AffiliatedEntity, ...]:
        return tuple(self.affiliates.get(role, ()))

    def all_affiliates(self) -> List[AffiliatedEntity]:
        return [entity for role in RoleCategory for entity in self.entities(role)]


class FindingKind(str, Enum):
    DIRECT = 'direct'
    LAWYER_BOTH_SIDES = 'lawyer-both-sides'
    LAWYER_OPPOSING_CLIENT = 'lawyer-opposing-client'
    RELATED_PARTY = 'related-party'
    RELATED_AS_PARTY = 'related-as-party'
    CROSS_ENTITY = 'cross-entity'
    POSITION_SWITCH = 'position-switch'


@dataclass(frozen=True)
class ConflictFinding:
    """One rule hit against one existing case"""
    kind: FindingKind
    reason: str
    case_id: int
    matched_by: str = 'none'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'reason': self.reason,
            'case_id': self.case_id,
            'matched_by': self.matched_by,
        }


class ConflictLevel(str, Enum):
    NONE = 'none'
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    ERROR = 'error'


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ConflictReport:
    """Outcome of a conflict check"""
    level: ConflictLevel
    reasons: Tuple[str, ...] = ()
    conflicting_cases: Tuple[int, ...] = ()
    recommendations: Tuple[str, ...] = ()
    checked_at: str = field(default_factory=utc_timestamp)
    findings: Tuple[ConflictFinding, ...] = ()

    @property
    def has_conflicts(self) -> bool:
        return self.level in (ConflictLevel.LOW, ConflictLevel.MEDIUM, ConflictLevel.HIGH)

    @classmethod
    def error(cls, message: str) -> 'ConflictReport':
        """Report returned when the check itself failed"""
        return cls(
            level=ConflictLevel.ERROR,
            reasons=(f"Error checking conflicts: {message}",),
            conflicting_cases=(),
            recommendations=('Please contact system administrator',)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'conflict_level': self.level.value,
            'conflict_reasons': list(self.reasons),
            'conflicting_cases': list(self.conflicting_cases),
            'recommendations': list(self.recommendations),
            'checked_at': self.checked_at,
            'findings': [f.to_dict() for f in self.findings],
        }


def safe_json_parse(value: Any, default: Any = None) -> Any:
    """Parse a JSON text column, returning default for blank or broken values"""
    if default is None:
        default = []
    if value is None or value == '':
        return default
    if not isinstance(value, (str, bytes, bytearray)):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError) as e:
        logger.warning("Could not parse JSON field: %s", e)
        return default
    return default if parsed is None else parsed


def parse_lawyer_ids(value: Any) -> Tuple[Any, ...]:
    """Lawyer ids from a list or a comma separated string; numeric ids become int"""
    if value is None or value == '':
        return ()
    if isinstance(value, str):
        items: Iterable[Any] = value.split(',')
    elif isinstance(value, (list, tuple, set)):
        items = value
    else:
        items = [value]
    ids = []
    for item in items:
        if isinstance(item, str):
            item = item.strip()
            if not item:
                continue
            if item.isdigit():
                item = int(item)
        ids.append(item)
    return tuple(dict.fromkeys(ids))


def _as_list(value: Any) -> List[Any]:
    parsed = safe_json_parse(value, [])
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, (str, dict)):
        return [parsed]
    return []


def infer_party_kind(kind: Optional[EntityKind], company_id: Any, person_id: Any) -> EntityKind:
    """Kind of a stored party, taken from its identifiers when they disagree

    A record carrying only a valid person identifier is an individual and
    one carrying only a valid company identifier is a legal entity. When
    both or neither are present the stored kind stands (legal when absent).
    """
    has_company = normalize_company_id(company_id, warn=False) is not None
    has_person = normalize_person_id(person_id, warn=False) is not None
    if has_person and not has_company:
        return EntityKind.INDIVIDUAL
    if has_company and not has_person:
        return EntityKind.LEGAL
    return kind or EntityKind.LEGAL


def case_snapshot_from_row(row: Mapping[str, Any], lawyer_ids: Any = None) -> CaseSnapshot:
    """Convert a stored case record into a CaseSnapshot

    Party types missing from the row, or contradicted by the only identifier
    stored, are inferred with infer_party_kind so no stored identifier is
    lost. Unparseable affiliate columns become empty lists.
    """
    def party(prefix: str) -> PartyDescriptor:
        company_id, person_id = row.get(f'{prefix}_inn'), row.get(f'{prefix}_pinfl')
        try:
            stored = EntityKind.parse(row.get(f'{prefix}_type'))
        except InvalidCaseInputError:
            logger.warning("Case %s has unknown %s_type, inferring it", row.get('id'), prefix)
            stored = None
        kind = infer_party_kind(stored, company_id, person_id)
        if stored is not None and kind is not stored:
            logger.warning("Case %s %s_type is %s but only a %s identifier is stored",
                           row.get('id'), prefix, stored.value,
                           'person' if kind is EntityKind.INDIVIDUAL else 'company')
        return PartyDescriptor.from_raw(
            name=row.get(f'{prefix}_name'),
            kind=kind,
            company_id=company_id,
            person_id=person_id
        )

    affiliates = {role: _as_list(row.get(role.value)) for role in RoleCategory}
    if lawyer_ids is None:
        lawyer_ids = row.get('lawyer_ids')

    return CaseSnapshot.build(
        client=party('client'),
        opponent=party('opponent'),
        affiliates=affiliates,
        lawyer_ids=parse_lawyer_ids(lawyer_ids),
        case_id=int(row.get('id') or 0),
        case_number=row.get('case_number')
    )
