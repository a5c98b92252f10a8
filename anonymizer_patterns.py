"""
Search term compilation.

A term is either one of the named patterns below (a pre-built regex plus a
value-level validator) or a user-supplied regular expression. User regexes
that fail to compile are searched for as literal text instead.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Tuple

_BSN_WEIGHTS = (9, 8, 7, 6, 5, 4, 3, 2, -1)


def is_valid_bsn(value: str) -> bool:
    """Dutch citizen service number 11-check (all zeros rejected)"""
    digits = value.rjust(9, '0')
    if len(digits) != 9 or not digits.isdigit():
        return False
    total = sum(int(d) * w for d, w in zip(digits, _BSN_WEIGHTS))
    return total % 11 == 0 and digits != '000000000'


def _always_valid(_: str) -> bool:
    return True


@dataclass(frozen=True)
class NamedPattern:
    """A pre-built regex and the check every hit must pass"""
    regex: re.Pattern
    validate: Callable[[str], bool]
    description: str


PATTERNS: Dict[str, NamedPattern] = {
    '<bsn>': NamedPattern(
        re.compile(r'\b\d{8,9}\b', re.IGNORECASE),
        is_valid_bsn,
        'Dutch BSN numbers',
    ),
    '<email>': NamedPattern(
        re.compile(r'\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Z|a-z]{2,}\b', re.IGNORECASE),
        _always_valid,
        'Email addresses',
    ),
    '<phone>': NamedPattern(
        re.compile(r'\b(?:\+31|0)[\s.\-]?(?:\d[\s.\-]?){9}\b', re.IGNORECASE),
        _always_valid,
        'Dutch phone numbers',
    ),
    '<iban>': NamedPattern(
        re.compile(r'\b[A-Z]{2}\d{2}[A-Z]{4}\d{10}\b', re.IGNORECASE),
        _always_valid,
        'IBAN numbers',
    ),
    '<date>': NamedPattern(
        re.compile(r'\b\d{1,2}[\-/.]\d{1,2}[\-/.]\d{2,4}\b', re.IGNORECASE),
        _always_valid,
        'Dates (DD-MM-YYYY, etc.)',
    ),
    '<postcode>': NamedPattern(
        re.compile(r'\b\d{4}\s?[A-Z]{2}\b', re.IGNORECASE),
        _always_valid,
        'Dutch postcodes',
    ),
}


def pattern_keys() -> List[str]:
    return list(PATTERNS)


def is_pattern(term: str) -> bool:
    return term in PATTERNS


@dataclass(frozen=True)
class CompiledTerm:
    """A search term ready to run over block text"""
    term: str
    regex: re.Pattern
    validate: Callable[[str], bool]

    def finditer(self, text: str) -> Iterator[Tuple[str, int]]:
        """Yield (matched_text, char_index) for every validated hit"""
        for hit in self.regex.finditer(text):
            matched = hit.group()
            # Empty hits have no extent to redact
            if not matched:
                continue
            if not self.validate(matched):
                continue
            yield matched, hit.start()


def compile_term(term: str) -> CompiledTerm:
    """
    Compile a term into a regex and validator.

    Never raises for malformed user input: an invalid regex is escaped and
    searched for literally.
    """
    if is_pattern(term):
        pattern = PATTERNS[term]
        return CompiledTerm(term, pattern.regex, pattern.validate)

    try:
        regex = re.compile(term, re.IGNORECASE)
    except re.error:
        regex = re.compile(re.escape(term), re.IGNORECASE)
    return CompiledTerm(term, regex, _always_valid)
