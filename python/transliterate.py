"""
Cyrillic/Latin transliteration and name variant generation

Covers Russian Cyrillic plus the Uzbek letters ў, қ, ғ, ҳ and the Uzbek
Latin alphabet (o', g', sh, ch). Used by the entity matcher to decide
whether two spellings denote the same name.
"""

import itertools
import logging
import re
from functools import lru_cache
from typing import Dict, Iterable, Optional, Set

logger = logging.getLogger(__name__)

CYRILLIC_TO_LATIN: Dict[str, str] = {
    'а': 'a', 'б': 'b', 'в': 'v', 'г': 'g', 'д': 'd', 'е': 'e', 'ё': 'yo',
    'ж': 'j', 'з': 'z', 'и': 'i', 'й': 'y', 'к': 'k', 'л': 'l', 'м': 'm',
    'н': 'n', 'о': 'o', 'п': 'p', 'р': 'r', 'с': 's', 'т': 't', 'у': 'u',
    'ф': 'f', 'х': 'x', 'ц': 'ts', 'ч': 'ch', 'ш': 'sh', 'щ': 'shch',
    'ъ': "'", 'ы': 'i', 'ь': '', 'э': 'e', 'ю': 'yu', 'я': 'ya',
    'ў': "o'", 'қ': 'q', 'ғ': "g'", 'ҳ': 'h',
    'А': 'A', 'Б': 'B', 'В': 'V', 'Г': 'G', 'Д': 'D', 'Е': 'E', 'Ё': 'Yo',
    'Ж': 'J', 'З': 'Z', 'И': 'I', 'Й': 'Y', 'К': 'K', 'Л': 'L', 'М': 'M',
    'Н': 'N', 'О': 'O', 'П': 'P', 'Р': 'R', 'С': 'S', 'Т': 'T', 'У': 'U',
    'Ф': 'F', 'Х': 'X', 'Ц': 'Ts', 'Ч': 'Ch', 'Ш': 'Sh', 'Щ': 'Shch',
    'Ъ': "'", 'Ы': 'I', 'Ь': '', 'Э': 'E', 'Ю': 'Yu', 'Я': 'Ya',
    'Ў': "O'", 'Қ': 'Q', 'Ғ': "G'", 'Ҳ': 'H',
}

# Letters with more than one accepted romanization (lowercase keys)
ALTERNATIVE_ROMANIZATIONS: Dict[str, tuple] = {
    'ж': ('j', 'zh'),
    'х': ('x', 'kh', 'h'),
    'ц': ('ts', 's'),
    'ў': ("o'", 'u'),
    'ғ': ("g'", 'gh'),
}

LATIN_TO_CYRILLIC: Dict[str, str] = {
    'a': 'а', 'b': 'б', 'v': 'в', 'g': 'г', 'd': 'д', 'e': 'е', 'j': 'ж',
    'z': 'з', 'i': 'и', 'y': 'й', 'k': 'к', 'l': 'л', 'm': 'м', 'n': 'н',
    'o': 'о', 'p': 'п', 'r': 'р', 's': 'с', 't': 'т', 'u': 'у', 'f': 'ф',
    'x': 'х', 'q': 'қ', 'h': 'ҳ',
}

LATIN_DIGRAPHS: Dict[str, str] = {
    'shch': 'щ', 'sh': 'ш', 'ch': 'ч', 'zh': 'ж', 'kh': 'х', 'ts': 'ц',
    'yo': 'ё', 'yu': 'ю', 'ya': 'я', "o'": 'ў', "g'": 'ғ', 'gh': 'ғ',
}

# Legal-form abbreviations: Cyrillic form -> Latin and upper-case spellings
LEGAL_FORM_ABBREVIATIONS: Dict[str, tuple] = {
    'ооо': ('ooo', 'ООО', 'OOO'),
    'мчж': ('mchj', 'МЧЖ', 'MCHJ'),
    'ип': ('ip', 'ИП', 'IP'),
    'ао': ('ao', 'АО', 'AO'),
    'зао': ('zao', 'ЗАО', 'ZAO'),
}

# Tokens removed from either end of a normalized party name
LEGAL_FORMS = frozenset({
    'ооо', 'оао', 'зао', 'пао', 'ип', 'ао', 'нао', 'одо', 'тоо',
    'ooo', 'oao', 'zao', 'pao', 'ip', 'ao', 'llc', 'ltd', 'inc',
    'мчж', 'mchj', 'хк', 'xk', 'qmj', 'қмж', 'aj', 'аж',
})

APOSTROPHES = "'`ʻʼ’‘"

_CYRILLIC_CHARS = 'а-яА-ЯёЁўЎқҚғҒҳҲ'
_CYRILLIC_RE = re.compile(f'[{_CYRILLIC_CHARS}]')
_CYRILLIC_RUN_RE = re.compile(f'[{_CYRILLIC_CHARS}]+')
_LATIN_RE = re.compile(r'[A-Za-z]')
_LATIN_RUN_RE = re.compile(f"[A-Za-z][A-Za-z{APOSTROPHES}]*")
_APOSTROPHE_RE = re.compile(f'[{APOSTROPHES}]')
_DIGRAPH_RE = re.compile(
    '|'.join(re.escape(k) for k in sorted(LATIN_DIGRAPHS, key=len, reverse=True)),
    re.IGNORECASE
)
_QUOTES_RE = re.compile(r'[\'"«»`‘’“”„ʻʼ]')
_PUNCTUATION_RE = re.compile(r'[.,;:!?]')
_WHITESPACE_RE = re.compile(r'\s+')


def contains_cyrillic(text: Optional[str]) -> bool:
    """True when text has at least one Cyrillic letter (Russian or Uzbek)"""
    return bool(text) and bool(_CYRILLIC_RE.search(text))


def contains_latin(text: Optional[str]) -> bool:
    """True when text has at least one basic Latin letter"""
    return bool(text) and bool(_LATIN_RE.search(text))


def detect_script(text: Optional[str]) -> str:
    """Classify text as 'cyrillic', 'latin', 'mixed' or 'none'"""
    cyrillic = contains_cyrillic(text)
    latin = contains_latin(text)
    if cyrillic and latin:
        return 'mixed'
    if cyrillic:
        return 'cyrillic'
    if latin:
        return 'latin'
    return 'none'


def _with_case(replacement: str, source: str) -> str:
    if source[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def cyrillic_to_latin(text: str, overrides: Optional[Dict[str, str]] = None) -> str:
    """Romanize Cyrillic letters; anything else passes through unchanged

    Args:
        text: Input text
        overrides: Lowercase Cyrillic letter -> romanization to use instead
            of the default table entry

    Returns:
        Transliterated text
    """
    if not text:
        return text or ''
    out = []
    for ch in text:
        lower = ch.lower()
        if overrides and lower in overrides:
            out.append(_with_case(overrides[lower], ch))
        else:
            out.append(CYRILLIC_TO_LATIN.get(ch, ch))
    return ''.join(out)


def latin_to_cyrillic(text: str) -> str:
    """Convert Latin text to Cyrillic

    Multi-letter sequences (shch, sh, ch, o', g', ...) are replaced first,
    longest first, then single letters. Case of the first letter of each
    sequence is preserved. Letters without a mapping pass through.
    """
    if not text:
        return text or ''
    text = _APOSTROPHE_RE.sub("'", text)
    text = _DIGRAPH_RE.sub(
        lambda m: LATIN_DIGRAPHS[m.group(0).lower()].upper()
        if m.group(0)[0].isupper() else LATIN_DIGRAPHS[m.group(0).lower()],
        text
    )
    out = []
    for ch in text:
        mapped = LATIN_TO_CYRILLIC.get(ch.lower())
        if mapped is None:
            out.append(ch)
        else:
            out.append(mapped.upper() if ch.isupper() else mapped)
    return ''.join(out)


def convert_mixed_to_latin(text: str) -> str:
    """Romanize only the Cyrillic runs of a mixed-script string"""
    return _CYRILLIC_RUN_RE.sub(lambda m: cyrillic_to_latin(m.group(0)), text)


def convert_mixed_to_cyrillic(text: str) -> str:
    """Convert only the Latin runs of a mixed-script string to Cyrillic"""
    return _LATIN_RUN_RE.sub(lambda m: latin_to_cyrillic(m.group(0)), text)


def _alternative_romanizations(text: str) -> Set[str]:
    """Every full romanization obtainable from the ambiguous letters in text"""
    present = sorted({ch.lower() for ch in text if ch.lower() in ALTERNATIVE_ROMANIZATIONS})
    if not present:
        return set()
    results = set()
    for choice in itertools.product(*(ALTERNATIVE_ROMANIZATIONS[ch] for ch in present)):
        results.add(cyrillic_to_latin(text, dict(zip(present, choice))))
    return results


def _replace_keeping_case(pattern: str, replacement: str, text: str) -> str:
    return re.sub(pattern, lambda m: _with_case(replacement, m.group(0)), text, flags=re.IGNORECASE)


def _latin_spelling_variants(text: str) -> Set[str]:
    """Apostrophe and x/kh/h spelling variants of a Latin string"""
    variants = set()
    if _APOSTROPHE_RE.search(text):
        variants.add(_APOSTROPHE_RE.sub('', text))
        variants.add(_APOSTROPHE_RE.sub('`', text))
        variants.add(_APOSTROPHE_RE.sub("'", text))
    if re.search('kh', text, re.IGNORECASE):
        variants.add(_replace_keeping_case('kh', 'x', text))
        variants.add(_replace_keeping_case('kh', 'h', text))
    elif re.search('x', text, re.IGNORECASE):
        variants.add(_replace_keeping_case('x', 'kh', text))
        variants.add(_replace_keeping_case('x', 'h', text))
    return variants


@lru_cache(maxsize=64)
def _token_pattern(token: str) -> 're.Pattern':
    return re.compile(rf'(?<!\w){re.escape(token)}(?!\w)', re.IGNORECASE)


def _abbreviation_variants(variants: Iterable[str]) -> Set[str]:
    """Swap legal-form abbreviations between Cyrillic, Latin and upper-case forms"""
    added = set()
    for variant in variants:
        for cyrillic, forms in LEGAL_FORM_ABBREVIATIONS.items():
            pattern = _token_pattern(cyrillic)
            if pattern.search(variant):
                for form in forms:
                    added.add(pattern.sub(form, variant))
            for form in forms:
                form_pattern = _token_pattern(form)
                if form_pattern.search(variant):
                    added.add(form_pattern.sub(cyrillic.upper(), variant))
    return added


def generate_variants(text: Optional[str]) -> Set[str]:
    """Generate plausible alternate spellings of a name

    The result always contains the input itself. For Cyrillic input it adds
    the standard romanization and every combination of alternative
    romanizations; for Latin input the Cyrillic conversion plus apostrophe
    and x/kh/h spellings; mixed input is converted run by run in both
    directions. Legal-form abbreviations are finally swapped between
    scripts.

    Args:
        text: Name as entered

    Returns:
        Set of spellings (never empty)
    """
    if not text:
        return {text or ''}

    variants = {text}
    script = detect_script(text)

    if script == 'cyrillic':
        variants.add(cyrillic_to_latin(text))
        variants |= _alternative_romanizations(text)
    elif script == 'latin':
        variants.add(latin_to_cyrillic(text))
        variants |= _latin_spelling_variants(text)
    elif script == 'mixed':
        variants.add(convert_mixed_to_latin(text))
        variants.add(convert_mixed_to_cyrillic(text))

    variants |= _abbreviation_variants(list(variants))
    variants.discard('')
    variants.add(text)
    return variants


def normalize_for_comparison(text: Optional[str]) -> str:
    """Lowercase, drop quotes and sentence punctuation, collapse whitespace"""
    if not text:
        return ''
    normalized = _QUOTES_RE.sub('', str(text).lower())
    normalized = _PUNCTUATION_RE.sub('', normalized)
    normalized = _WHITESPACE_RE.sub(' ', normalized)
    return normalized.strip()


def strip_legal_form(normalized: str) -> str:
    """Remove a legal-form token from the start or end of a normalized name

    The name is returned unchanged when stripping would leave nothing.
    """
    tokens = normalized.split(' ')
    if len(tokens) > 1 and tokens[0] in LEGAL_FORMS:
        tokens = tokens[1:]
    if len(tokens) > 1 and tokens[-1] in LEGAL_FORMS:
        tokens = tokens[:-1]
    return ' '.join(tokens)


def normalize_party_name(text: Optional[str], strip_legal_forms: bool = True) -> str:
    """Normalized form of a party name used for equality and fingerprints"""
    normalized = normalize_for_comparison(text)
    if strip_legal_forms and normalized:
        normalized = strip_legal_form(normalized)
    return normalized
