"""
Conflict rules

Runs the five conflict checks of a candidate case against one existing
case and turns the collected findings into a classified report.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from config_manager import ConfigManager, get_config
from conflict_models import (
    ROLE_RULES,
    CaseSnapshot,
    ConflictFinding,
    ConflictLevel,
    ConflictReport,
    FindingKind,
    RoleCategory,
)
from matcher import EntityMatcher, MatchResult

logger = logging.getLogger(__name__)

HIGH_SEVERITY = frozenset({FindingKind.DIRECT, FindingKind.LAWYER_BOTH_SIDES})
MEDIUM_SEVERITY = frozenset({
    FindingKind.LAWYER_OPPOSING_CLIENT,
    FindingKind.CROSS_ENTITY,
    FindingKind.POSITION_SWITCH,
})

RECOMMENDATIONS: Dict[ConflictLevel, tuple] = {
    ConflictLevel.HIGH: (
        'IMMEDIATE ACTION REQUIRED: High conflict detected',
        'Do not proceed with this case without senior partner approval',
        'Consider declining representation or obtaining conflict waiver',
    ),
    ConflictLevel.MEDIUM: (
        'Review conflict details carefully',
        'Consult with compliance department',
        'Document any mitigation measures taken',
    ),
    ConflictLevel.LOW: (
        'Minor conflicts detected - review for potential issues',
        'Ensure proper information barriers if proceeding',
    ),
    ConflictLevel.NONE: (
        'No conflicts detected',
        'Case can proceed normally',
    ),
    ConflictLevel.ERROR: (
        'Please contact system administrator',
    ),
}


def classify(findings: Iterable[ConflictFinding]) -> ConflictLevel:
    """Highest severity among the findings (NONE when there are none)"""
    kinds = {f.kind for f in findings}
    if not kinds:
        return ConflictLevel.NONE
    if kinds & HIGH_SEVERITY:
        return ConflictLevel.HIGH
    if kinds & MEDIUM_SEVERITY:
        return ConflictLevel.MEDIUM
    return ConflictLevel.LOW


def generate_recommendations(level: ConflictLevel) -> List[str]:
    return list(RECOMMENDATIONS[ConflictLevel(level)])


def build_report(findings: Iterable[ConflictFinding]) -> ConflictReport:
    """Deduplicate findings and assemble the final report"""
    unique: List[ConflictFinding] = []
    seen_reasons = set()
    for finding in findings:
        if finding.reason in seen_reasons:
            continue
        seen_reasons.add(finding.reason)
        unique.append(finding)

    level = classify(unique)
    return ConflictReport(
        level=level,
        reasons=tuple(f.reason for f in unique),
        conflicting_cases=tuple(dict.fromkeys(f.case_id for f in unique)),
        recommendations=tuple(generate_recommendations(level)),
        findings=tuple(unique)
    )


class ConflictRuleEngine:
    """Applies the conflict rules to a pair of cases"""

    def __init__(self, config: Optional[ConfigManager] = None,
                 matcher: Optional[EntityMatcher] = None):
        self.config = config or get_config()
        self.matcher = matcher or EntityMatcher(self.config)
        self.check_related_entities = self.config.rules.check_related_entities
        self.detailed_logging = self.config.logging.detailed

    def evaluate(self, candidate: CaseSnapshot, existing: CaseSnapshot,
                 lawyer_names: Optional[Mapping[Any, str]] = None) -> List[ConflictFinding]:
        """Run every rule of candidate against one existing case

        Args:
            candidate: Case being checked
            existing: Previously stored case
            lawyer_names: Lawyer id -> display name

        Returns:
            Findings in rule order (may be empty)
        """
        lawyer_names = lawyer_names or {}
        # candidate client vs existing opponent, candidate opponent vs existing client
        client_vs_opponent = self.matcher.is_match(candidate.client, existing.opponent)
        opponent_vs_client = self.matcher.is_match(candidate.opponent, existing.client)

        findings: List[ConflictFinding] = []
        findings.extend(self._check_direct(candidate, existing, client_vs_opponent, opponent_vs_client))
        findings.extend(self._check_lawyers(candidate, existing, lawyer_names,
                                            client_vs_opponent, opponent_vs_client))
        if self.check_related_entities:
            findings.extend(self._check_related(candidate, existing))
        findings.extend(self._check_cross_entity(candidate, existing))
        findings.extend(self._check_position_switch(existing, client_vs_opponent, opponent_vs_client))

        if self.detailed_logging:
            for finding in findings:
                logger.debug("Case #%s: %s matched by %s",
                             existing.display_number, finding.kind.value, finding.matched_by)
        return findings

    def _check_direct(self, candidate: CaseSnapshot, existing: CaseSnapshot,
                      client_vs_opponent: MatchResult,
                      opponent_vs_client: MatchResult) -> List[ConflictFinding]:
        findings = []
        number = existing.display_number
        if client_vs_opponent:
            findings.append(ConflictFinding(
                FindingKind.DIRECT,
                f'Direct conflict: Your client "{candidate.client.display_name}" '
                f'is an opponent in case #{number}',
                existing.case_id,
                client_vs_opponent.matched_by
            ))
        if opponent_vs_client:
            findings.append(ConflictFinding(
                FindingKind.DIRECT,
                f'Direct conflict: Your opponent "{candidate.opponent.display_name}" '
                f'is our client in case #{number}',
                existing.case_id,
                opponent_vs_client.matched_by
            ))
        return findings

    def _check_lawyers(self, candidate: CaseSnapshot, existing: CaseSnapshot,
                       lawyer_names: Mapping[Any, str],
                       client_vs_opponent: MatchResult,
                       opponent_vs_client: MatchResult) -> List[ConflictFinding]:
        if not candidate.lawyer_ids or not existing.lawyer_ids:
            return []
        existing_ids = set(existing.lawyer_ids)
        shared = [lid for lid in candidate.lawyer_ids if lid in existing_ids]
        if not shared:
            return []

        findings = []
        number = existing.display_number
        for lawyer_id in shared:
            lawyer = lawyer_names.get(lawyer_id) or f'ID: {lawyer_id}'
            if opponent_vs_client:
                findings.append(ConflictFinding(
                    FindingKind.LAWYER_OPPOSING_CLIENT,
                    f'Lawyer conflict: {lawyer} previously represented opponent '
                    f'"{candidate.opponent.display_name}" in case #{number}',
                    existing.case_id,
                    opponent_vs_client.matched_by
                ))
            if client_vs_opponent:
                findings.append(ConflictFinding(
                    FindingKind.LAWYER_BOTH_SIDES,
                    f'Lawyer conflict: {lawyer} cannot represent both sides - already representing '
                    f'opponent "{candidate.client.display_name}" in case #{number}',
                    existing.case_id,
                    client_vs_opponent.matched_by
                ))
        return findings

    def _check_related(self, candidate: CaseSnapshot, existing: CaseSnapshot) -> List[ConflictFinding]:
        findings = []
        number = existing.display_number
        for role in RoleCategory:
            rule = ROLE_RULES[role]
            existing_entities = existing.entities(role)
            for entity in candidate.entities(role):
                for other in existing_entities:
                    result = self.matcher.is_match(
                        entity, other,
                        use_company_id=rule.match_company_id,
                        use_person_id=rule.match_person_id
                    )
                    if result:
                        findings.append(ConflictFinding(
                            FindingKind.RELATED_PARTY,
                            f'Related party conflict ({rule.label}): '
                            f'"{entity.display_name}" is present in case #{number}',
                            existing.case_id,
                            result.matched_by
                        ))
                        break

                if not rule.check_as_party:
                    continue
                for party in (existing.client, existing.opponent):
                    result = self.matcher.is_match(entity, party)
                    if result:
                        findings.append(ConflictFinding(
                            FindingKind.RELATED_AS_PARTY,
                            f'Conflict: {rule.label} "{entity.display_name}" '
                            f'is a party in case #{number}',
                            existing.case_id,
                            result.matched_by
                        ))
                        break
        return findings

    def _check_cross_entity(self, candidate: CaseSnapshot, existing: CaseSnapshot) -> List[ConflictFinding]:
        findings = []
        for entity in candidate.all_affiliates():
            if not ROLE_RULES[entity.role].cross_entity:
                continue
            result = self.matcher.is_match(entity, existing.opponent)
            if result:
                findings.append(ConflictFinding(
                    FindingKind.CROSS_ENTITY,
                    f'Cross-conflict: Client\'s affiliated person "{entity.display_name}" '
                    f'is an opponent in case #{existing.display_number}',
                    existing.case_id,
                    result.matched_by
                ))
        return findings

    def _check_position_switch(self, existing: CaseSnapshot,
                               client_vs_opponent: MatchResult,
                               opponent_vs_client: MatchResult) -> List[ConflictFinding]:
        if client_vs_opponent and opponent_vs_client:
            return [ConflictFinding(
                FindingKind.POSITION_SWITCH,
                f'Position switch conflict: Parties have switched positions '
                f'compared to case #{existing.display_number}',
                existing.case_id,
                client_vs_opponent.matched_by
            )]
        return []
