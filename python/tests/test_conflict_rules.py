"""
Unit tests for the conflict rules and the conflict level classifier
"""

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from conflict_models import (
    CaseSnapshot,
    ConflictFinding,
    ConflictLevel,
    FindingKind,
    PartyDescriptor,
    EntityKind,
    case_snapshot_from_row,
    infer_party_kind,
    InvalidCaseInputError,
)
from conflict_rules import ConflictRuleEngine, build_report, classify, generate_recommendations


def party(name=None, kind='legal', inn=None, pinfl=None):
    return PartyDescriptor.from_raw(name, kind, inn, pinfl)


def case(client, opponent, case_id=0, case_number=None, affiliates=None, lawyer_ids=()):
    return CaseSnapshot.build(
        client=client,
        opponent=opponent,
        affiliates=affiliates,
        lawyer_ids=lawyer_ids,
        case_id=case_id,
        case_number=case_number
    )


def kinds(findings):
    return [f.kind for f in findings]


@pytest.fixture
def config():
    return ConfigManager.from_dict({})


@pytest.fixture
def engine(config):
    return ConflictRuleEngine(config)


class TestDirectConflict:
    """Client/opponent crossing between the candidate and a stored case"""

    def test_opponent_is_existing_client_by_company_id(self, engine):
        """Opponent with the same INN as a stored client is a high conflict"""
        candidate = case(party("ООО Ромашка"), party("Quyosh MCHJ", inn="123456789012"))
        existing = case(
            party("Quyosh MCHJ", inn="123456789012"), party("Boshqa LLC"),
            case_id=2, case_number="A-2024-15"
        )

        findings = engine.evaluate(candidate, existing)

        assert kinds(findings) == [FindingKind.DIRECT]
        assert findings[0].matched_by == "company-id"
        assert findings[0].case_id == 2
        assert "Quyosh MCHJ" in findings[0].reason
        assert "#A-2024-15" in findings[0].reason
        assert classify(findings) is ConflictLevel.HIGH

    def test_names_in_different_scripts(self, engine):
        """No identifiers at all; names differ only by script"""
        candidate = case(party("Boshqa Firma"), party("Алишер Навоий", kind="individual"))
        existing = case(party("Alisher Navoiy", kind="individual"), party("Other Side"), case_id=5)

        findings = engine.evaluate(candidate, existing)

        assert kinds(findings) == [FindingKind.DIRECT]
        assert findings[0].matched_by == "name-transliteration"
        assert "case #5" in findings[0].reason

    def test_client_is_existing_opponent(self, engine):
        candidate = case(party("Quyosh"), party("Nurli Yo'l"))
        existing = case(party("Boshqa"), party("Қуёш"), case_id=3)

        findings = engine.evaluate(candidate, existing)

        assert kinds(findings) == [FindingKind.DIRECT]
        assert 'Your client "Quyosh" is an opponent' in findings[0].reason

    def test_unrelated_cases(self, engine):
        candidate = case(party("Alpha"), party("Beta"))
        existing = case(party("Gamma"), party("Delta"), case_id=9)
        assert engine.evaluate(candidate, existing) == []


class TestPositionSwitch:

    def test_swapped_parties(self, engine):
        candidate = case(party("Alpha"), party("Beta"))
        existing = case(party("Beta"), party("Alpha"), case_id=4)

        findings = engine.evaluate(candidate, existing)

        assert kinds(findings).count(FindingKind.DIRECT) == 2
        assert FindingKind.POSITION_SWITCH in kinds(findings)
        assert classify(findings) is ConflictLevel.HIGH


class TestLawyerConflict:
    """Shared lawyers between the candidate and a stored case"""

    def test_lawyer_on_both_sides(self, engine):
        candidate = case(party("Alpha"), party("Beta"), lawyer_ids=[7])
        existing = case(party("Gamma"), party("Alpha"), case_id=8, lawyer_ids=[7, 9])

        findings = engine.evaluate(candidate, existing, lawyer_names={7: "Karimov Aziz"})

        both_sides = [f for f in findings if f.kind is FindingKind.LAWYER_BOTH_SIDES]
        assert len(both_sides) == 1
        assert "Karimov Aziz cannot represent both sides" in both_sides[0].reason
        assert '"Alpha"' in both_sides[0].reason
        assert classify(findings) is ConflictLevel.HIGH

    def test_lawyer_opposing_former_client(self, engine):
        """The sole shared lawyer already represents the stored client the candidate opposes"""
        candidate = case(party("Alpha"), party("Beta"), lawyer_ids=[7])
        existing = case(party("Beta"), party("Gamma"), case_id=8, lawyer_ids=[7])

        findings = engine.evaluate(candidate, existing)

        lawyer = [f for f in findings if f.kind is FindingKind.LAWYER_OPPOSING_CLIENT]
        assert len(lawyer) == 1
        assert "ID: 7 previously represented opponent" in lawyer[0].reason
        assert classify(findings) is ConflictLevel.HIGH

    def test_lawyer_finding_alone_is_medium(self):
        finding = ConflictFinding(FindingKind.LAWYER_OPPOSING_CLIENT, "Lawyer conflict", 8)
        assert classify([finding]) is ConflictLevel.MEDIUM

    def test_no_shared_lawyer(self, engine):
        candidate = case(party("Alpha"), party("Beta"), lawyer_ids=[1])
        existing = case(party("Beta"), party("Gamma"), case_id=8, lawyer_ids=[2])

        findings = engine.evaluate(candidate, existing)

        assert kinds(findings) == [FindingKind.DIRECT]


class TestRelatedPartyConflict:
    """Affiliates of the candidate against affiliates and parties of a stored case"""

    def test_founder_matched_by_person_id(self, engine):
        candidate = case(party("Alpha"), party("Beta"), affiliates={
            'founders': [{'name': 'Rustam Azimov', 'pinfl': '12345678901234'}]
        })
        existing = case(party("Gamma"), party("Delta"), case_id=11, affiliates={
            'founders': [{'name': 'Р. Азимов', 'pinfl': '1234 5678 9012 34'}]
        })

        findings = engine.evaluate(candidate, existing)

        assert kinds(findings) == [FindingKind.RELATED_PARTY]
        assert findings[0].matched_by == "person-id"
        assert "(founder)" in findings[0].reason
        assert classify(findings) is ConflictLevel.LOW

    def test_related_company_matched_by_company_id(self, engine):
        candidate = case(party("Alpha"), party("Beta"), affiliates={
            'related_companies': [{'name': 'Foo', 'inn': '111222333'}]
        })
        existing = case(party("Gamma"), party("Delta"), case_id=12, affiliates={
            'related_companies': [{'name': 'Completely Other', 'inn': '111222333'}]
        })

        findings = engine.evaluate(candidate, existing)

        assert kinds(findings) == [FindingKind.RELATED_PARTY]
        assert findings[0].matched_by == "company-id"

    def test_categories_are_not_crossed(self, engine):
        """A related company never matches a director of the other case"""
        candidate = case(party("Alpha"), party("Beta"), affiliates={
            'related_companies': ['Samarqand Savdo']
        })
        existing = case(party("Gamma"), party("Delta"), case_id=13, affiliates={
            'directors': ['Samarqand Savdo']
        })

        assert engine.evaluate(candidate, existing) == []

    def test_related_individual_is_a_party(self, engine):
        candidate = case(party("Alpha"), party("Beta"), affiliates={
            'related_individuals': ['Alisher Navoiy']
        })
        existing = case(party("Алишер Навоий", kind="individual"), party("Delta"), case_id=14)

        findings = engine.evaluate(candidate, existing)

        assert kinds(findings) == [FindingKind.RELATED_AS_PARTY]
        assert "individual" in findings[0].reason
        assert classify(findings) is ConflictLevel.LOW

    def test_related_checks_can_be_disabled(self):
        config = ConfigManager.from_dict({'rules': {'check_related_entities': False}})
        engine = ConflictRuleEngine(config)
        candidate = case(party("Alpha"), party("Beta"), affiliates={
            'founders': [{'name': 'Rustam Azimov', 'pinfl': '12345678901234'}]
        })
        existing = case(party("Gamma"), party("Delta"), case_id=11, affiliates={
            'founders': [{'name': 'Rustam Azimov', 'pinfl': '12345678901234'}]
        })

        assert engine.evaluate(candidate, existing) == []

    def test_unknown_category_rejected(self):
        with pytest.raises(InvalidCaseInputError):
            case(party("Alpha"), party("Beta"), affiliates={'cousins': ['X']})


class TestCrossEntityConflict:

    def test_director_is_opponent_elsewhere(self, engine):
        candidate = case(party("Alpha"), party("Beta"), affiliates={'directors': ['Bobur Mirzo']})
        existing = case(party("Gamma"), party("Бобур Мирзо", kind="individual"), case_id=15)

        findings = engine.evaluate(candidate, existing)

        assert kinds(findings) == [FindingKind.CROSS_ENTITY]
        assert "Bobur Mirzo" in findings[0].reason
        assert classify(findings) is ConflictLevel.MEDIUM

    def test_only_existing_opponent_is_checked(self, engine):
        candidate = case(party("Alpha"), party("Beta"), affiliates={'directors': ['Bobur Mirzo']})
        existing = case(party("Bobur Mirzo", kind="individual"), party("Delta"), case_id=16)

        assert engine.evaluate(candidate, existing) == []

    def test_related_companies_are_not_pooled(self, engine):
        candidate = case(party("Alpha"), party("Beta"), affiliates={
            'related_companies': ['Samarqand Savdo']
        })
        existing = case(party("Gamma"), party("Samarqand Savdo"), case_id=17)

        assert engine.evaluate(candidate, existing) == []


class TestClassifierAndReport:

    def test_empty_findings(self):
        assert classify([]) is ConflictLevel.NONE

    def test_classification_is_order_independent(self):
        findings = [
            ConflictFinding(FindingKind.RELATED_PARTY, "r", 1),
            ConflictFinding(FindingKind.CROSS_ENTITY, "c", 2),
            ConflictFinding(FindingKind.DIRECT, "d", 3),
        ]
        assert classify(findings) is ConflictLevel.HIGH
        assert classify(reversed(findings)) is ConflictLevel.HIGH

    def test_related_only_is_low(self):
        findings = [
            ConflictFinding(FindingKind.RELATED_PARTY, "r", 1),
            ConflictFinding(FindingKind.RELATED_AS_PARTY, "p", 1),
        ]
        assert classify(findings) is ConflictLevel.LOW

    def test_build_report_deduplicates(self):
        findings = [
            ConflictFinding(FindingKind.DIRECT, "same reason", 3),
            ConflictFinding(FindingKind.DIRECT, "same reason", 3),
            ConflictFinding(FindingKind.CROSS_ENTITY, "other reason", 3),
            ConflictFinding(FindingKind.RELATED_PARTY, "third reason", 1),
        ]
        report = build_report(findings)

        assert report.level is ConflictLevel.HIGH
        assert report.reasons == ("same reason", "other reason", "third reason")
        assert report.conflicting_cases == (3, 1)
        assert report.recommendations[0] == "IMMEDIATE ACTION REQUIRED: High conflict detected"

    def test_no_conflict_report(self):
        report = build_report([])
        assert report.level is ConflictLevel.NONE
        assert not report.has_conflicts
        assert list(report.recommendations) == ["No conflicts detected", "Case can proceed normally"]

    def test_recommendations_per_level(self):
        assert generate_recommendations(ConflictLevel.MEDIUM)[0] == "Review conflict details carefully"
        assert generate_recommendations("low")[0].startswith("Minor conflicts detected")

    def test_report_to_dict(self):
        report = build_report([ConflictFinding(FindingKind.CROSS_ENTITY, "c", 2, "name-exact")])
        data = report.to_dict()
        assert data['conflict_level'] == "medium"
        assert data['conflicting_cases'] == [2]
        assert data['findings'][0] == {
            'kind': 'cross-entity', 'reason': 'c', 'case_id': 2, 'matched_by': 'name-exact'
        }


class TestCaseSnapshotFromRow:
    """Lenient conversion of stored rows"""

    def test_row_with_json_affiliates_and_lawyer_string(self):
        row = {
            'id': 21,
            'case_number': 'B-7',
            'client_name': 'Quyosh MCHJ',
            'client_inn': '123 456 789',
            'client_pinfl': '12345678901234',
            'opponent_name': 'Alisher Navoiy',
            'opponent_type': 'individual',
            'opponent_pinfl': '12345678901234',
            'founders': '[{"name": "Rustam Azimov", "pinfl": "12345678901234"}, "Bobur Mirzo"]',
            'directors': 'not json',
            'lawyer_ids': '3, 5,3',
        }
        snapshot = case_snapshot_from_row(row)

        assert snapshot.case_id == 21
        assert snapshot.display_number == 'B-7'
        assert snapshot.client.company_id == '123456789'
        assert snapshot.client.person_id is None
        assert snapshot.opponent.person_id == '12345678901234'
        assert [e.name for e in snapshot.all_affiliates()] == ['Rustam Azimov', 'Bobur Mirzo']
        assert snapshot.lawyer_ids == (3, 5)

    def test_unknown_party_type_defaults_to_legal(self):
        snapshot = case_snapshot_from_row({'id': 1, 'client_name': 'X', 'client_type': 'robot'})
        assert snapshot.client.kind.value == 'legal'

    @pytest.mark.parametrize("stored_type", [None, '', 'robot', 'legal'])
    def test_lone_person_id_makes_an_individual(self, stored_type):
        snapshot = case_snapshot_from_row({
            'id': 4, 'opponent_name': 'Karimov', 'opponent_type': stored_type,
            'opponent_pinfl': '12345678901234',
        })
        assert snapshot.opponent.kind is EntityKind.INDIVIDUAL
        assert snapshot.opponent.person_id == '12345678901234'

    def test_lone_company_id_makes_a_legal_entity(self):
        snapshot = case_snapshot_from_row({
            'id': 4, 'client_name': 'Quyosh', 'client_type': 'individual', 'client_inn': '123456789',
        })
        assert snapshot.client.kind is EntityKind.LEGAL
        assert snapshot.client.company_id == '123456789'

    def test_infer_party_kind(self):
        assert infer_party_kind(None, None, '12345678901234') is EntityKind.INDIVIDUAL
        assert infer_party_kind(EntityKind.INDIVIDUAL, None, None) is EntityKind.INDIVIDUAL
        assert infer_party_kind(None, None, 'bad') is EntityKind.LEGAL
        assert infer_party_kind(EntityKind.INDIVIDUAL, '123456789', '12345678901234') is EntityKind.INDIVIDUAL

    def test_explicit_lawyer_ids_win(self):
        snapshot = case_snapshot_from_row({'id': 1, 'lawyer_ids': '1,2'}, lawyer_ids=[9])
        assert snapshot.lawyer_ids == (9,)
        assert snapshot.display_number == '1'
