"""
Unit tests for the conflict check building blocks
Tests configuration, identifier normalization, transliteration and matching
"""

import logging
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager, ConfigurationError, CacheConfig
from conflict_models import PartyDescriptor, EntityKind, InvalidCaseInputError
from identifiers import normalize_company_id, normalize_person_id
from log_utils import sanitize_for_logging
from matcher import EntityMatcher, token_jaccard, rank_name_candidates
from transliterate import (
    cyrillic_to_latin,
    latin_to_cyrillic,
    convert_mixed_to_latin,
    convert_mixed_to_cyrillic,
    detect_script,
    generate_variants,
    normalize_for_comparison,
    normalize_party_name,
)


@pytest.fixture
def config():
    return ConfigManager.from_dict({})


@pytest.fixture
def matcher(config):
    return EntityMatcher(config)


class TestConfigManager:
    """Tests for configuration management"""

    def test_default_config_values(self):
        """Defaults apply when no section is given"""
        config = ConfigManager.from_dict({})

        thresholds = config.matching.similarity_thresholds
        assert (thresholds.high, thresholds.medium, thresholds.low) == (0.95, 0.85, 0.75)
        assert config.matching.enable_transliteration is True
        assert config.matching.min_string_length_for_similarity == 10
        assert config.rules.check_related_entities is True
        assert config.cache.ttl_seconds == 300
        assert config.cache.max_size == 1000
        assert config.cache.lawyer_ttl_seconds == 600

    def test_config_loads_from_yaml(self, tmp_path):
        """Values from config.yaml override the defaults"""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("""
matching:
  enable_transliteration: false
  similarity_thresholds:
    high: 0.9
    medium: 0.8
    low: 0.7
rules:
  check_related_entities: false
cache:
  enabled: false
  ttl_seconds: 30
  max_size: 50
""")
        ConfigManager.reset_instance()
        config = ConfigManager(str(config_file))

        assert config.matching.enable_transliteration is False
        assert config.matching.similarity_thresholds.medium == 0.8
        assert config.rules.check_related_entities is False
        assert config.cache.enabled is False
        assert config.cache.ttl_seconds == 30
        assert config.cache.max_size == 50

    def test_unordered_thresholds_rejected(self):
        """low <= medium <= high is enforced"""
        with pytest.raises(ConfigurationError):
            ConfigManager.from_dict({
                'matching': {'similarity_thresholds': {'high': 0.8, 'medium': 0.9, 'low': 0.7}}
            })

    def test_threshold_out_of_range_rejected(self):
        with pytest.raises(ConfigurationError):
            ConfigManager.from_dict({'matching': {'similarity_thresholds': {'high': 1.5}}})

    def test_invalid_cache_settings_rejected(self):
        with pytest.raises(ConfigurationError):
            ConfigManager.from_dict({'cache': {'max_size': 0}})
        with pytest.raises(ConfigurationError):
            ConfigManager.from_dict({'cache': {'eviction_fraction': 0}})

    def test_invalid_yaml_raises(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("matching: [unclosed")
        with pytest.raises(ConfigurationError):
            ConfigManager(str(config_file))

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ConfigManager(str(tmp_path / "missing.yaml"))
        assert config.cache.max_size == CacheConfig().max_size

    def test_to_dict_exports_effective_settings(self):
        exported = ConfigManager.from_dict({'cache': {'ttl_seconds': 60}}).to_dict()
        assert exported['cache']['ttl_seconds'] == 60
        assert exported['matching']['similarity_thresholds']['medium'] == 0.85


class TestIdentifiers:
    """Tests for INN / PINFL normalization"""

    @pytest.mark.parametrize("raw,expected", [
        ("123456789", "123456789"),
        ("123 456 789", "123456789"),
        ("123-456-789-012", "123456789012"),
        (123456789, "123456789"),
        ("12345", None),
        ("12345678901", None),
        ("12345678A", None),
        ("", None),
        (None, None),
    ])
    def test_normalize_company_id(self, raw, expected):
        assert normalize_company_id(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("12345678901234", "12345678901234"),
        ("1234 5678 9012 34", "12345678901234"),
        ("1234567890123", None),
        ("123456789012345", None),
        (None, None),
    ])
    def test_normalize_person_id(self, raw, expected):
        assert normalize_person_id(raw) == expected

    def test_company_id_normalization_is_idempotent(self):
        for raw in ("123 456 789", "123-456-789-012"):
            once = normalize_company_id(raw)
            assert normalize_company_id(once) == once

    def test_rejected_identifier_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="identifiers"):
            assert normalize_company_id("12-34") is None
        assert "Invalid company identifier" in caplog.text

    def test_rejection_can_be_silent(self, caplog):
        with caplog.at_level(logging.WARNING, logger="identifiers"):
            assert normalize_person_id("abc", warn=False) is None
        assert caplog.text == ""


class TestTransliteration:
    """Tests for Cyrillic/Latin conversion and variant generation"""

    def test_cyrillic_to_latin_uzbek_letters(self):
        assert cyrillic_to_latin("Ўзбекистон") == "O'zbekiston"
        assert cyrillic_to_latin("Алишер Навоий") == "Alisher Navoiy"
        assert cyrillic_to_latin("Ғафур Ғулом") == "G'afur G'ulom"

    def test_latin_to_cyrillic_digraphs_first(self):
        assert latin_to_cyrillic("Shahzod") == "Шаҳзод"
        assert latin_to_cyrillic("O'zbekiston") == "Ўзбекистон"
        assert latin_to_cyrillic("Quyosh") == "Қуёш"

    def test_latin_to_cyrillic_accepts_apostrophe_variants(self):
        assert latin_to_cyrillic("Oʻzbekiston") == "Ўзбекистон"
        assert latin_to_cyrillic("O`zbekiston") == "Ўзбекистон"

    def test_round_trip_for_unambiguous_letters(self):
        for word in ("Ташкент", "Самарқанд", "Бобур"):
            assert latin_to_cyrillic(cyrillic_to_latin(word)) == word

    def test_soft_sign_is_lossy(self):
        """The soft sign has no Latin form and cannot be restored"""
        assert cyrillic_to_latin("Ольга") == "Olga"
        assert latin_to_cyrillic("Olga") == "Олга"

    def test_mixed_conversion_only_touches_other_script(self):
        assert convert_mixed_to_latin("ООО Quyosh") == "OOO Quyosh"
        assert convert_mixed_to_cyrillic("ООО Quyosh") == "ООО Қуёш"

    @pytest.mark.parametrize("text,expected", [
        ("Алишер", "cyrillic"),
        ("Alisher", "latin"),
        ("ООО Quyosh", "mixed"),
        ("12345", "none"),
        ("", "none"),
    ])
    def test_detect_script(self, text, expected):
        assert detect_script(text) == expected

    def test_variants_always_contain_input(self):
        for text in ("Алишер Навоий", "Alisher Navoiy", "ООО Quyosh", "12345", "!!"):
            variants = generate_variants(text)
            assert text in variants
            assert len(variants) >= 1

    def test_cyrillic_variants_include_alternative_romanizations(self):
        variants = generate_variants("Хасанов")
        assert {"Xasanov", "Khasanov", "Hasanov"} <= variants

    def test_latin_variants_include_cyrillic_and_x_spellings(self):
        variants = generate_variants("Xasanov")
        assert {"Хасанов", "Khasanov", "Hasanov"} <= variants

    def test_latin_variants_include_apostrophe_spellings(self):
        variants = generate_variants("G'ulom")
        assert {"Gulom", "G`ulom", "Ғулом"} <= variants

    def test_legal_form_abbreviations_swap_script(self):
        assert "OOO Romashka" in generate_variants("ООО Ромашка")
        assert "OOO Ромашка" in generate_variants("ООО Ромашка")
        assert "Қуёш МЧЖ" in generate_variants("Quyosh MCHJ")

    def test_abbreviation_swap_needs_whole_token(self):
        """'ao' inside a word is not a legal form"""
        assert not any("АО" in v for v in generate_variants("Navoiy Bao"))

    def test_empty_input(self):
        assert generate_variants("") == {""}
        assert generate_variants(None) == {""}

    def test_normalize_for_comparison(self):
        assert normalize_for_comparison('  ООО  "Ромашка", ') == "ооо ромашка"
        assert normalize_for_comparison("«Quyosh»  MCHJ.") == "quyosh mchj"
        assert normalize_for_comparison(None) == ""

    def test_normalize_party_name_strips_legal_form(self):
        assert normalize_party_name('ООО "Ромашка"') == "ромашка"
        assert normalize_party_name("Quyosh MCHJ") == "quyosh"
        assert normalize_party_name("ООО") == "ооо"
        assert normalize_party_name("Quyosh MCHJ", strip_legal_forms=False) == "quyosh mchj"


class TestPartyDescriptor:
    """Tests for party construction from raw input"""

    def test_legal_party_keeps_only_company_id(self):
        party = PartyDescriptor.from_raw("Quyosh", "legal", "123 456 789", "12345678901234")
        assert party.company_id == "123456789"
        assert party.person_id is None

    def test_individual_keeps_only_person_id(self):
        party = PartyDescriptor.from_raw("Alisher", "individual", "123456789", "12345678901234")
        assert party.company_id is None
        assert party.person_id == "12345678901234"

    def test_display_name_falls_back_to_identifier(self):
        assert PartyDescriptor.from_raw(None, "legal", "123456789").display_name == "INN: 123456789"
        assert PartyDescriptor.from_raw(None, "individual", None, "12345678901234").display_name \
            == "PINFL: 12345678901234"
        assert PartyDescriptor().display_name == "unknown"

    def test_unknown_kind_raises(self):
        with pytest.raises(InvalidCaseInputError):
            PartyDescriptor.from_raw("X", "robot")

    def test_kind_spellings(self):
        assert EntityKind.parse("Company") is EntityKind.LEGAL
        assert EntityKind.parse("person") is EntityKind.INDIVIDUAL
        assert EntityKind.parse(None, default=EntityKind.LEGAL) is EntityKind.LEGAL


class TestEntityMatcher:
    """Tests for party matching"""

    def test_company_id_match_wins(self, matcher):
        a = PartyDescriptor.from_raw("Quyosh MCHJ", "legal", "123456789012")
        b = PartyDescriptor.from_raw("Sunshine LLC", "legal", "123 456 789 012")
        result = matcher.is_match(a, b)
        assert result.matched
        assert result.matched_by == "company-id"

    def test_person_id_match(self, matcher):
        a = PartyDescriptor.from_raw("Alisher", "individual", None, "12345678901234")
        b = PartyDescriptor.from_raw("Someone Else", "individual", None, "12345678901234")
        assert matcher.is_match(a, b).matched_by == "person-id"

    def test_identifier_channel_can_be_disabled(self, matcher):
        a = PartyDescriptor.from_raw("Alpha", "legal", "123456789")
        b = PartyDescriptor.from_raw("Beta", "legal", "123456789")
        assert not matcher.is_match(a, b, use_company_id=False)

    def test_absent_identifiers_never_match(self, matcher):
        a = PartyDescriptor.from_raw("Alpha", "legal")
        b = PartyDescriptor.from_raw("Beta", "legal")
        assert not matcher.is_match(a, b)

    def test_name_exact_ignores_case_quotes_and_legal_form(self, matcher):
        result = matcher.match_names('ООО "Ромашка"', "ромашка")
        assert result.matched_by == "name-exact"

    def test_name_transliteration(self, matcher):
        result = matcher.match_names("Алишер Навоий", "Alisher Navoiy")
        assert result.matched
        assert result.matched_by == "name-transliteration"

    def test_name_transliteration_with_alternative_spelling(self, matcher):
        assert matcher.match_names("Хасанов", "Khasanov").matched_by == "name-transliteration"

    def test_name_similarity(self, matcher):
        a = "alpha beta gamma delta epsilon zeta"
        b = "alpha beta gamma delta epsilon zeta omega"
        result = matcher.match_names(a, b)
        assert result.matched
        assert result.matched_by == "name-similarity-86"

    def test_similarity_requires_minimum_length(self, matcher):
        assert not matcher.match_names("ab cd", "ab cd ef")

    def test_different_names_do_not_match(self, matcher):
        assert not matcher.match_names("Alisher Navoiy", "Bobur Mirzo")
        assert not matcher.match_names("", "Bobur Mirzo")
        assert not matcher.match_names(None, None)

    def test_match_is_symmetric(self, matcher):
        pairs = [
            ("Алишер Навоий", "Alisher Navoiy"),
            ("Хасанов", "Khasanov"),
            ("alpha beta gamma delta epsilon zeta", "alpha beta gamma delta epsilon zeta omega"),
            ("Alisher Navoiy", "Bobur Mirzo"),
        ]
        for a, b in pairs:
            assert matcher.match_names(a, b).matched == matcher.match_names(b, a).matched

    def test_transliteration_disabled(self):
        config = ConfigManager.from_dict({'matching': {'enable_transliteration': False}})
        matcher = EntityMatcher(config)
        assert not matcher.match_names("Алишер Навоий", "Alisher Navoiy")
        assert matcher.match_names("ALISHER NAVOIY", "alisher navoiy").matched_by == "name-exact"

    def test_token_jaccard(self):
        assert token_jaccard("a b", "a b") == 1.0
        assert token_jaccard("a b", "b c") == pytest.approx(1 / 3)
        assert token_jaccard("", "") == 0.0

    def test_rank_candidates(self, matcher):
        suggestions = matcher.rank_candidates(
            "Alisher Navoiy", ["Алишер Навоий", "Alisher Navoi", "Bobur Mirzo", "Алишер Навоий"]
        )
        names = [s.name for s in suggestions]
        assert names[0] == "Алишер Навоий"
        assert suggestions[0].score == 1.0
        assert suggestions[0].tier == "high"
        assert "Alisher Navoi" in names
        assert "Bobur Mirzo" not in names
        assert names.count("Алишер Навоий") == 1

    def test_rank_name_candidates_limit(self, config):
        suggestions = rank_name_candidates(
            "Quyosh", ["Quyosh", "Қуёш", "Quyosh MCHJ"], config=config, limit=1
        )
        assert len(suggestions) == 1


class TestLogSanitization:

    def test_strips_control_characters(self):
        assert sanitize_for_logging("Alisher\nFAKE ENTRY") == "Alisher FAKE ENTRY"

    def test_truncates_long_input(self):
        assert len(sanitize_for_logging("x" * 1000)) == 500

    def test_empty(self):
        assert sanitize_for_logging("") == ""
