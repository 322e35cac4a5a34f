"""
Conflict Check Service

Entry point used by the API and the CLI: fetches candidate cases from the
case store, runs the rule engine against each and returns a classified
ConflictReport, memoized by a content fingerprint.
"""

import hashlib
import logging
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Set, Tuple

from config_manager import ConfigManager, get_config
from conflict_cache import ConflictCacheService
from conflict_models import (
    CaseSnapshot,
    ConflictReport,
    EntityKind,
    PartyDescriptor,
)
from conflict_rules import ConflictRuleEngine, build_report
from log_utils import sanitize_for_logging
from matcher import EntityMatcher
from transliterate import generate_variants, normalize_party_name

logger = logging.getLogger(__name__)


class CaseRepository(Protocol):
    """Case store queried by the service"""

    def fetch_candidate_cases(self, identifiers: Sequence[str], names: Sequence[str],
                              exclude_case_id: Optional[int], limit: int) -> List[CaseSnapshot]:
        ...

    def fetch_lawyer_names(self, lawyer_ids: Sequence[Any]) -> Dict[Any, str]:
        ...


def compute_fingerprint(snapshot: CaseSnapshot, strip_legal_forms: bool = True) -> str:
    """Deterministic cache key for a candidate case

    Built from the normalized identifiers, normalized client and opponent
    names and the sorted lawyer ids. Affiliates are not part of the key.
    """
    client, opponent = snapshot.client, snapshot.opponent
    parts = [
        client.company_id or '',
        client.person_id or '',
        opponent.company_id or '',
        opponent.person_id or '',
        normalize_party_name(client.name, strip_legal_forms),
        normalize_party_name(opponent.name, strip_legal_forms),
        ','.join(sorted({str(i) for i in snapshot.lawyer_ids})),
    ]
    return hashlib.sha256('\x1f'.join(parts).encode('utf-8')).hexdigest()


class ConflictCheckService:
    """Runs conflict checks against a case repository"""

    def __init__(self, repository: CaseRepository,
                 config: Optional[ConfigManager] = None,
                 cache: Optional[ConflictCacheService] = None,
                 rule_engine: Optional[ConflictRuleEngine] = None):
        self.repository = repository
        self.config = config or get_config()
        self.cache = cache
        self.matcher = rule_engine.matcher if rule_engine else EntityMatcher(self.config)
        self.rule_engine = rule_engine or ConflictRuleEngine(self.config, self.matcher)
        self.max_cases = self.config.performance.max_cases_to_check
        self.detailed_logging = self.config.logging.detailed

    @property
    def cache_enabled(self) -> bool:
        return self.cache is not None and self.cache.enabled

    def check_conflicts(self, snapshot: CaseSnapshot) -> ConflictReport:
        """Check a case against every stored case returned by the prefilter

        Never raises for data-access failures: those produce a report with
        level ERROR, which is not cached.

        Args:
            snapshot: Candidate case (case_id 0 for ad-hoc checks)

        Returns:
            ConflictReport
        """
        started = time.perf_counter()
        cache_key = compute_fingerprint(snapshot, self.config.matching.strip_legal_forms)

        if self.cache_enabled:
            try:
                cached = self.cache.results.get(cache_key)
            except Exception:
                logger.exception("Result cache read failed, treating as miss")
                cached = None
            if cached is not None:
                logger.info("Returning cached conflict result for case #%s", snapshot.display_number)
                return cached

        if self.detailed_logging:
            logger.info(
                "Checking conflicts for case #%s: client=%s opponent=%s",
                snapshot.display_number,
                sanitize_for_logging(snapshot.client.display_name),
                sanitize_for_logging(snapshot.opponent.display_name)
            )

        try:
            identifiers, names = self._collect_search_terms(snapshot)
            candidates = self.repository.fetch_candidate_cases(
                identifiers=identifiers,
                names=names,
                exclude_case_id=snapshot.case_id or None,
                limit=self.max_cases
            )
            logger.info("Found %d potential conflicting cases", len(candidates))

            lawyer_names = self._load_lawyer_names(self._shared_lawyer_ids(snapshot, candidates))

            findings = []
            for existing in candidates:
                if snapshot.case_id and existing.case_id == snapshot.case_id:
                    continue
                findings.extend(self.rule_engine.evaluate(snapshot, existing, lawyer_names))
        except Exception as e:
            logger.exception("Conflict check error: %s", sanitize_for_logging(str(e)))
            return ConflictReport.error(str(e))

        report = build_report(findings)

        if self.cache_enabled:
            self.cache.results.put(cache_key, report)

        logger.info(
            "Conflict check completed: level=%s conflicts=%d cases=%s (%.1fms)",
            report.level.value,
            len(report.reasons),
            list(report.conflicting_cases),
            (time.perf_counter() - started) * 1000
        )
        return report

    def search(self, client_name: Optional[str] = None, client_type: Any = EntityKind.LEGAL,
               client_company_id: Any = None, client_person_id: Any = None,
               opponent_name: Optional[str] = None, opponent_type: Any = EntityKind.LEGAL,
               opponent_company_id: Any = None, opponent_person_id: Any = None,
               affiliates: Optional[Mapping[str, Iterable[Any]]] = None,
               lawyer_ids: Iterable[Any] = ()) -> ConflictReport:
        """Ad-hoc check for a prospective case that is not stored yet

        Identifiers that do not fit the party type are ignored.
        """
        snapshot = CaseSnapshot.build(
            client=PartyDescriptor.from_raw(
                client_name, client_type, client_company_id, client_person_id
            ),
            opponent=PartyDescriptor.from_raw(
                opponent_name, opponent_type, opponent_company_id, opponent_person_id
            ),
            affiliates=affiliates,
            lawyer_ids=lawyer_ids
        )
        return self.check_conflicts(snapshot)

    def _collect_search_terms(self, snapshot: CaseSnapshot) -> Tuple[List[str], List[str]]:
        """Identifiers and name spellings used to prefilter candidate cases"""
        parties: List[PartyDescriptor] = [snapshot.client, snapshot.opponent]
        parties.extend(snapshot.all_affiliates())

        identifiers: Set[str] = set()
        names: Set[str] = set()
        for party in parties:
            identifiers.update(party.identifiers)
            if not party.name:
                continue
            if self.matcher.enable_transliteration:
                names.update(generate_variants(party.name))
            else:
                names.add(party.name)
            names.update(self.matcher.variants(party.name))
        return sorted(identifiers), sorted(n for n in names if n)

    @staticmethod
    def _shared_lawyer_ids(snapshot: CaseSnapshot, candidates: Iterable[CaseSnapshot]) -> List[Any]:
        own = set(snapshot.lawyer_ids)
        if not own:
            return []
        shared = []
        for existing in candidates:
            shared.extend(lid for lid in existing.lawyer_ids if lid in own)
        return list(dict.fromkeys(shared))

    def _load_lawyer_names(self, lawyer_ids: Sequence[Any]) -> Dict[Any, str]:
        if not lawyer_ids:
            return {}
        if not self.cache_enabled:
            return dict(self.repository.fetch_lawyer_names(list(lawyer_ids)))

        found, missing = self.cache.lawyers.get_many(lawyer_ids)
        if missing:
            fetched = dict(self.repository.fetch_lawyer_names(missing))
            # unknown ids are cached as '' so the rules fall back to "ID: <id>" without a re-query
            fetched.update({lid: '' for lid in missing if lid not in fetched})
            self.cache.lawyers.put_many(fetched)
            found.update(fetched)
        return found

    def cache_stats(self) -> Dict[str, Any]:
        if self.cache is None:
            return {'enabled': False}
        return self.cache.stats()
