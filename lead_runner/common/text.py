"""
Text normalization helpers for lead rows.

Usage:
    from lead_runner.common.text import clean_name, split_name, clean_company_name

    name = clean_name("Dr. Jane Doe, MBA 🚀")           # "Jane Doe"
    first, last = split_name(name)                     # ("Jane", "Doe")
    company = clean_company_name("ACME Holdings, Inc.")  # "Acme"
"""

import re
import unicodedata
from typing import Iterable, List, Optional, Tuple


def normalize_for_dedupe(text: Optional[str]) -> str:
    """
    Normalize text for matching - remove all non-alphanumeric characters.

    Examples:
        >>> normalize_for_dedupe("Jean-Luc O'Neil")
        'jeanluconeil'
        >>> normalize_for_dedupe(None)
        ''
    """
    if not text:
        return ""
    return re.sub(r"[^a-z0-9]", "", text.lower())


def normalize_key(value: Optional[str]) -> str:
    """Key used for profile-URL dedup: trimmed and lowercased."""
    if value is None:
        return ""
    return str(value).strip().lower()


def clean_cell(value) -> str:
    """
    Make a value safe for a single CSV line.

    NUL characters are dropped, line breaks become spaces, surrounding
    whitespace is trimmed. ``None`` becomes "".
    """
    if value is None:
        return ""
    s = str(value).replace("\x00", "")
    s = re.sub(r"\r?\n|\r", " ", s)
    return s.strip()


def _strip_symbols(s: str) -> str:
    # Emoji and other pictographs are category So; lone surrogates are Cs
    return "".join(" " if unicodedata.category(ch) in ("So", "Cs") else ch for ch in s)


def _title_case(s: str) -> str:
    return re.sub(r"\b\w+", lambda m: m.group(0)[:1].upper() + m.group(0)[1:].lower(), s)


# =============================================================================
# Names
# =============================================================================

_NAME_TOKENS = [
    "dr", "mr", "mrs", "ms", "miss", "prof", "sir",
    "jr", "sr", "ii", "iii", "iv",
    "phd", "mba", "cpa", "cfa", "pmp", "msc", "bsc", "esq",
]
_NAME_TOKEN_RE = re.compile(rf"\b(?:{'|'.join(_NAME_TOKENS)})\b\.?", re.IGNORECASE)


def clean_name(raw: Optional[str]) -> str:
    """
    Clean a display name scraped from a sidebar card.

    Removes emoji, anything in brackets, everything after the first comma
    (credentials such as ", MBA"), honorifics and degree tokens.

    >>> clean_name("Dr. Jane Doe, MBA")
    'Jane Doe'
    >>> clean_name("Ana (she/her) Lopez")
    'Ana Lopez'
    """
    if not raw:
        return ""
    s = unicodedata.normalize("NFKC", raw)
    s = _strip_symbols(s)
    s = re.sub(r"[\(\[\{][^\)\]\}]*[\)\]\}]", " ", s)
    s = re.sub(r"[\(\[\{].*$", " ", s)
    s = s.split(",", 1)[0]
    s = s.split("|", 1)[0]
    s = _NAME_TOKEN_RE.sub(" ", s)
    s = re.sub(r"[^\w\s'\-.]", " ", s)
    s = re.sub(r"(?<!\w)\.|\.(?!\w)", " ", s)
    return re.sub(r"\s+", " ", s).strip()


def split_name(full_name: str) -> Tuple[str, str]:
    """First token and last token; last is empty for single-word names."""
    tokens = [t for t in (full_name or "").split() if t]
    first = tokens[0] if tokens else ""
    last = tokens[-1] if len(tokens) > 1 else ""
    return first, last


def names_match(profile_name: str, row_name: str, row_first: str = "", row_last: str = "") -> bool:
    """
    Name-priority match between an enrichment profile and a base row.

    Full names are compared first; failing that, first and last name
    tokens must both agree.
    """
    a = normalize_for_dedupe(clean_name(profile_name))
    if not a:
        return False
    if a == normalize_for_dedupe(clean_name(row_name)):
        return True

    first, last = split_name(clean_name(profile_name))
    if not (first and last):
        return False
    if not (row_first and row_last):
        row_first, row_last = split_name(clean_name(row_name))
    return (
        normalize_for_dedupe(first) == normalize_for_dedupe(row_first)
        and normalize_for_dedupe(last) == normalize_for_dedupe(row_last)
    )


# =============================================================================
# Companies
# =============================================================================

LEGAL_SUFFIXES = [
    r"incorporated", r"inc\.?", r"corp\.?", r"corporation", r"co\.?", r"company",
    r"llc", r"l\.l\.c\.", r"ltd\.?", r"limited", r"lp", r"l\.p\.", r"llp", r"l\.l\.p\.",
    r"pc", r"p\.c\.", r"plc", r"p\.l\.c\.",
    r"société\s+par\s+actions",
    r"pty\s*ltd\.?",
    r"gmbh", r"ag",
    r"sarl", r"sa", r"sas",
    r"pvt\s*ltd\.?",
]

GENERIC_BUSINESS_WORDS = [
    r"group", r"enterprises?", r"industry", r"industries", r"holdings?",
    r"international", r"solutions?", r"systems?", r"technology", r"technologies",
    r"ventures?", r"partners?", r"services?", r"associates?", r"global",
    r"network", r"consulting", r"logistics", r"media", r"labs?",
]

_LEGAL_RE = re.compile(rf"\b(?:{'|'.join(LEGAL_SUFFIXES)})\b", re.IGNORECASE)
_GENERIC_RE = re.compile(rf"\b(?:{'|'.join(GENERIC_BUSINESS_WORDS)})\b", re.IGNORECASE)


def clean_company_name(raw: Optional[str], truncate_at_any_symbol: bool = False) -> str:
    """
    Normalise a company name for outreach.

    Strips legal suffixes, generic business words, bracketed text and
    punctuation, then title-cases what is left.

    >>> clean_company_name("ACME Holdings, Inc.")
    'Acme'
    >>> clean_company_name("Blue River Technologies GmbH")
    'Blue River'
    """
    if not raw:
        return ""
    s = unicodedata.normalize("NFKC", raw)
    s = _strip_symbols(s)
    s = re.sub(r"[\(\[\{].*$", " ", s)
    # Dotted abbreviations like "s.r.o." or "b.v."
    s = re.sub(r"\b(?:[A-Za-z]\.){2,}[A-Za-z]?\.?", " ", s)
    s = re.sub(r"[.,].*$", " ", s)
    s = re.sub(r"\s*\b[A-Za-z]\b\s*$", " ", s)
    if truncate_at_any_symbol:
        m = re.search(r"[^0-9A-Za-z\s]", s)
        if m:
            s = s[:m.start()]
    s = _LEGAL_RE.sub(" ", s)
    s = _GENERIC_RE.sub(" ", s)
    s = re.sub(r"[^0-9A-Za-z\s]", " ", s)
    s = re.sub(r"\s+", " ", s).strip()
    return _title_case(s)


# =============================================================================
# Email domains
# =============================================================================

FREE_EMAIL_DOMAINS = frozenset({
    "gmail.com", "googlemail.com", "yahoo.com", "yahoo.co.uk", "ymail.com",
    "hotmail.com", "hotmail.co.uk", "outlook.com", "live.com", "msn.com",
    "aol.com", "icloud.com", "me.com", "mac.com", "protonmail.com", "proton.me",
    "gmx.com", "gmx.de", "mail.com", "yandex.com", "yandex.ru", "zoho.com",
    "web.de", "qq.com", "163.com",
})


def email_domain(email: str) -> Optional[str]:
    at = (email or "").rfind("@")
    if at == -1:
        return None
    domain = email[at + 1:].strip().lower()
    return domain or None


def filter_business_domains(raw_emails: Iterable[str], limit: int = 3) -> List[str]:
    """
    Business domains from a list of email addresses.

    Free-mail providers are dropped, duplicates removed, order kept, and at
    most ``limit`` domains returned.

    >>> filter_business_domains(["a@gmail.com", "b@acme.io", "c@ACME.io", "d@beta.com"])
    ['acme.io', 'beta.com']
    """
    domains: List[str] = []
    for email in raw_emails:
        domain = email_domain(email)
        if not domain or domain in FREE_EMAIL_DOMAINS:
            continue
        if domain not in domains:
            domains.append(domain)
        if len(domains) == limit:
            break
    return domains
