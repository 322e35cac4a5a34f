"""
Entity Matcher Module
Decides whether two parties denote the same real-world entity
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, Iterable, List, Optional

from rapidfuzz import fuzz

from config_manager import ConfigManager, get_config
from conflict_models import PartyDescriptor
from transliterate import generate_variants, normalize_party_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing two parties

    matched_by is one of company-id, person-id, name-exact,
    name-transliteration, name-similarity-<pct> or none.
    """
    matched: bool
    matched_by: str = 'none'
    score: float = 0.0

    def __bool__(self) -> bool:
        return self.matched


NO_MATCH = MatchResult(matched=False)


@dataclass(frozen=True)
class NameSuggestion:
    """A ranked candidate name for the similar-names lookup"""
    name: str
    score: float
    tier: str


def token_jaccard(a: str, b: str) -> float:
    """Jaccard similarity of whitespace-separated token sets (0-1)"""
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    if not tokens_a and not tokens_b:
        return 0.0
    union = tokens_a | tokens_b
    return len(tokens_a & tokens_b) / len(union)


@lru_cache(maxsize=4096)
def _normalized_variants(name: str, transliterate: bool, strip_legal_forms: bool) -> FrozenSet[str]:
    spellings = generate_variants(name) if transliterate else {name}
    normalized = {normalize_party_name(s, strip_legal_forms) for s in spellings}
    normalized.discard('')
    return frozenset(normalized)


class EntityMatcher:
    """Compares parties by identifier, then by name and its variants"""

    def __init__(self, config: Optional[ConfigManager] = None):
        self.config = config or get_config()
        matching = self.config.matching
        self.enable_transliteration = matching.enable_transliteration
        self.strip_legal_forms = matching.strip_legal_forms
        self.min_length = matching.min_string_length_for_similarity
        self.thresholds = matching.similarity_thresholds

    def variants(self, name: str) -> FrozenSet[str]:
        """Normalized spellings used for comparison"""
        if not name:
            return frozenset()
        return _normalized_variants(name, self.enable_transliteration, self.strip_legal_forms)

    def is_match(self, a: PartyDescriptor, b: PartyDescriptor,
                 use_company_id: bool = True, use_person_id: bool = True) -> MatchResult:
        """Check whether two parties are the same entity

        Equal company identifiers win, then equal person identifiers, then
        the name checks. Identifiers absent on either side never match.

        Args:
            a: First party
            b: Second party
            use_company_id: Consider company identifiers
            use_person_id: Consider person identifiers

        Returns:
            MatchResult describing how (or whether) the parties matched
        """
        if use_company_id and a.company_id and a.company_id == b.company_id:
            return MatchResult(True, 'company-id', 1.0)
        if use_person_id and a.person_id and a.person_id == b.person_id:
            return MatchResult(True, 'person-id', 1.0)
        return self.match_names(a.name, b.name)

    def match_names(self, name_a: Optional[str], name_b: Optional[str]) -> MatchResult:
        """Compare two names: exact, then variant overlap, then token similarity"""
        if not name_a or not name_b:
            return NO_MATCH

        normalized_a = normalize_party_name(name_a, self.strip_legal_forms)
        normalized_b = normalize_party_name(name_b, self.strip_legal_forms)
        if not normalized_a or not normalized_b:
            return NO_MATCH

        if normalized_a == normalized_b:
            return MatchResult(True, 'name-exact', 1.0)

        if self.enable_transliteration:
            variants_a = self.variants(name_a)
            variants_b = self.variants(name_b)
            if variants_a & variants_b:
                return MatchResult(True, 'name-transliteration', 1.0)
        else:
            variants_a = frozenset({normalized_a})
            variants_b = frozenset({normalized_b})

        best = 0.0
        for left in variants_a:
            if len(left) <= self.min_length:
                continue
            for right in variants_b:
                if len(right) <= self.min_length:
                    continue
                best = max(best, token_jaccard(left, right))

        if best >= self.thresholds.medium:
            return MatchResult(True, f'name-similarity-{round(best * 100)}', best)
        return NO_MATCH

    def rank_candidates(self, query: str, candidates: Iterable[str], limit: int = 10) -> List[NameSuggestion]:
        """Rank candidate names against a query using fuzzy token-sort scoring

        Each candidate is scored as the best rapidfuzz token_sort_ratio over
        all variant pairs. Scores below the low threshold are dropped; the
        rest are tagged high/medium/low.
        """
        query_variants = self.variants(query)
        if not query_variants:
            return []

        suggestions = []
        seen = set()
        for candidate in candidates:
            if not candidate or candidate in seen:
                continue
            seen.add(candidate)
            candidate_variants = self.variants(candidate)
            if not candidate_variants:
                continue
            score = max(
                fuzz.token_sort_ratio(q, c) for q in query_variants for c in candidate_variants
            ) / 100.0
            tier = self._tier(score)
            if tier:
                suggestions.append(NameSuggestion(name=candidate, score=round(score, 4), tier=tier))

        suggestions.sort(key=lambda s: (-s.score, s.name))
        return suggestions[:limit]

    def _tier(self, score: float) -> Optional[str]:
        if score >= self.thresholds.high:
            return 'high'
        if score >= self.thresholds.medium:
            return 'medium'
        if score >= self.thresholds.low:
            return 'low'
        return None


def rank_name_candidates(query: str, candidates: Iterable[str],
                         config: Optional[ConfigManager] = None, limit: int = 10) -> List[NameSuggestion]:
    """Rank candidate names against a query (see EntityMatcher.rank_candidates)"""
    return EntityMatcher(config).rank_candidates(query, candidates, limit=limit)
