"""
CSV Store

Incremental, spreadsheet-friendly CSV output for a job:

- ``upsert_rows``: create the file (BOM + canonical header) or append to it
  using exactly the header already on disk.
- ``merge_by_key``: write enrichment domains into matching rows in place.
- ``deduplicate_by_key``: keep the first row per profile URL.

Every field is quoted, embedded quotes doubled, line breaks collapsed, and
lines end with CRLF.
"""

import csv
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from lead_runner.common.error_handling import best_effort
from lead_runner.common.text import clean_cell, names_match, normalize_key
from lead_runner.common.types import EnrichmentProfile

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

ENCODING = "utf-8-sig"
LINE_TERMINATOR = "\r\n"

# Logical row key -> header written for new files
BASE_COLUMNS: List[Tuple[str, str]] = [
    ("name", "Name"),
    ("first_name", "First Name"),
    ("last_name", "Last Name"),
    ("title", "Title"),
    ("company", "Company"),
    ("location", "Location"),
    ("profile_url", "LinkedIn URL"),
]
CANONICAL_COLUMNS = BASE_COLUMNS + [("domain", "Website")]
CANONICAL_EMAIL_COLUMNS = CANONICAL_COLUMNS + [("email", "Email")]

# Header cell (lowercased) -> logical row key, covering every schema ever written
HEADER_TO_KEY: Dict[str, str] = {
    "name": "name",
    "first name": "first_name",
    "last name": "last_name",
    "title": "title",
    "company": "company",
    "location": "location",
    "person_location": "location",
    "linkedin url": "profile_url",
    "linkedin": "profile_url",
    "person_title": "profile_url",
    "website": "domain",
    "domain": "domain",
    "email": "email",
    "domain1": "domain1",
    "domain2": "domain2",
    "domain3": "domain3",
}

DEFAULT_KEY_ALIASES = ("LinkedIn URL", "LinkedIn", "person_title")

_LEGACY_DOMAIN_RE = re.compile(r"^domain\d+$")


class SchemaVariant(str, Enum):
    """Historical header layouts an output file may carry."""

    CANONICAL = "canonical"                          # base + Website
    CANONICAL_WITH_EMAIL = "canonical_with_email"    # base + Website + Email
    LEGACY_MULTI_DOMAIN = "legacy_multi_domain"      # base + domain1[/domain2/domain3] [+ Email]
    EMAIL_ONLY = "email_only"                        # base + Email
    BARE = "bare"                                    # base only


@dataclass
class CsvSchema:
    """Parsed header of an existing file, tagged with its variant."""

    variant: SchemaVariant
    headers: List[str]
    keys: List[Optional[str]]   # Logical key per header cell; None for unknown columns

    @property
    def legacy_domain_indexes(self) -> List[int]:
        return [i for i, h in enumerate(self.headers) if _LEGACY_DOMAIN_RE.match(h.strip().lower())]

    def index_of(self, key: str) -> Optional[int]:
        try:
            return self.keys.index(key)
        except ValueError:
            return None

    def row_to_cells(self, row: Mapping[str, object]) -> List[str]:
        """Project a row dict onto this header; absent fields become ""."""
        values = dict(row)
        if self.variant == SchemaVariant.LEGACY_MULTI_DOMAIN and values.get("domain") and not values.get("domain1"):
            values["domain1"] = values["domain"]
        return [clean_cell(values.get(key, "")) if key else "" for key in self.keys]


def detect_schema(header_cells: Sequence[str]) -> CsvSchema:
    """
    Classify a header row.

    Cells are compared whole and case-insensitively, so ``domain1`` is never
    mistaken for a consolidated ``domain`` column.
    """
    headers = [h.strip() for h in header_cells]
    lowered = [h.lower() for h in headers]
    has_domain = "website" in lowered or "domain" in lowered
    has_legacy = any(_LEGACY_DOMAIN_RE.match(h) for h in lowered)
    has_email = "email" in lowered

    if has_domain and has_email:
        variant = SchemaVariant.CANONICAL_WITH_EMAIL
    elif has_domain:
        variant = SchemaVariant.CANONICAL
    elif has_legacy:
        variant = SchemaVariant.LEGACY_MULTI_DOMAIN
    elif has_email:
        variant = SchemaVariant.EMAIL_ONLY
    else:
        variant = SchemaVariant.BARE

    keys = [HEADER_TO_KEY.get(h) for h in lowered]
    return CsvSchema(variant=variant, headers=headers, keys=keys)


def _writer(handle):
    return csv.writer(handle, quoting=csv.QUOTE_ALL, lineterminator=LINE_TERMINATOR)


def _has_content(path: Path) -> bool:
    return path.exists() and path.stat().st_size > 0


def read_header(file_path: PathLike) -> Optional[List[str]]:
    """First line of the file parsed as CSV, or None if missing/empty."""
    path = Path(file_path)
    if not _has_content(path):
        return None
    with open(path, "r", encoding=ENCODING, newline="") as f:
        return next(csv.reader(f), None)


def read_schema(file_path: PathLike) -> Optional[CsvSchema]:
    header = read_header(file_path)
    return detect_schema(header) if header else None


def read_rows(file_path: PathLike) -> Tuple[List[str], List[List[str]]]:
    """Header and data rows; blank lines skipped, short rows padded."""
    with open(file_path, "r", encoding=ENCODING, newline="") as f:
        reader = csv.reader(f)
        header = next(reader, [])
        width = len(header)
        rows = []
        for raw in reader:
            if not raw or all(not cell.strip() for cell in raw):
                continue
            cells = [cell.strip() for cell in raw[:width]]
            cells.extend([""] * (width - len(cells)))
            rows.append(cells)
    return header, rows


def _write_all(path: Path, header: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding=ENCODING, newline="") as f:
        writer = _writer(f)
        writer.writerow([clean_cell(h) for h in header])
        writer.writerows([[clean_cell(c) for c in row] for row in rows])
    os.replace(tmp_path, path)


def _ends_with_newline(path: Path) -> bool:
    with open(path, "rb") as f:
        f.seek(-1, os.SEEK_END)
        return f.read(1) in (b"\n", b"\r")


def upsert_rows(rows: Sequence[Mapping[str, object]], file_path: PathLike) -> int:
    """
    Append rows to ``file_path``, creating it if needed.

    New files get a BOM and the canonical header (with Website and Email).
    Existing files keep their header exactly; rows are projected onto it.

    Returns:
        Number of rows written. An empty ``rows`` writes nothing and does not
        create or touch the file.
    """
    if not rows:
        return 0

    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    schema = read_schema(path)
    if schema is None:
        schema = detect_schema([header for _, header in CANONICAL_EMAIL_COLUMNS])
        with open(path, "w", encoding=ENCODING, newline="") as f:
            writer = _writer(f)
            writer.writerow(schema.headers)
            writer.writerows(schema.row_to_cells(r) for r in rows)
        logger.info(f"Created {path.name} with {len(rows)} row(s)")
        return len(rows)

    needs_newline = not _ends_with_newline(path)
    # Plain utf-8 on append so no second BOM lands mid-file
    with open(path, "a", encoding="utf-8", newline="") as f:
        if needs_newline:
            f.write(LINE_TERMINATOR)
        _writer(f).writerows(schema.row_to_cells(r) for r in rows)
    logger.info(f"Appended {len(rows)} row(s) to {path.name} ({schema.variant.value})")
    return len(rows)


def read_key_values(file_path: PathLike, key_aliases: Sequence[str] = DEFAULT_KEY_ALIASES) -> Set[str]:
    """Normalized non-empty values of the first key column present, or an empty set."""
    path = Path(file_path)
    if not _has_content(path):
        return set()
    header, rows = read_rows(path)
    idx = _find_key_index(header, key_aliases)
    if idx is None:
        return set()
    return {normalize_key(row[idx]) for row in rows if normalize_key(row[idx])}


def _find_key_index(header: Sequence[str], key_aliases: Sequence[str]) -> Optional[int]:
    lowered = [h.strip().lower() for h in header]
    for alias in key_aliases:
        if alias.lower() in lowered:
            return lowered.index(alias.lower())
    return None


def _default_match(profile: EnrichmentProfile, row: Mapping[str, str]) -> bool:
    return names_match(
        profile.get("full_name", ""),
        row.get("name", ""),
        row.get("first_name", ""),
        row.get("last_name", ""),
    )


def merge_by_key(
    base_file: PathLike,
    profiles: Sequence[EnrichmentProfile],
    match_fn: Callable[[EnrichmentProfile, Mapping[str, str]], bool] = _default_match,
    overwrite: bool = False,
) -> int:
    """
    Merge enrichment domains into the rows of ``base_file`` in place.

    For each profile with at least one domain, the first eligible row for
    which ``match_fn(profile, row)`` holds receives the profile's first
    domain. A row is eligible if it has not received a value in this call
    and, unless ``overwrite``, has an empty domain. Legacy ``domainN`` cells
    of updated rows are cleared. Unmatched profiles are dropped; no row is
    ever added or removed. A Website column is added if the file has no
    consolidated domain column.

    Returns:
        Number of rows updated.
    """
    path = Path(base_file)
    if not profiles or not _has_content(path):
        return 0

    header, rows = read_rows(path)
    schema = detect_schema(header)
    domain_idx = schema.index_of("domain")
    column_added = domain_idx is None
    if column_added:
        header = list(header) + ["Website"]
        rows = [row + [""] for row in rows]
        schema = detect_schema(header)
        domain_idx = schema.index_of("domain")
    legacy_idx = schema.legacy_domain_indexes

    row_dicts = [
        {key: row[i] for i, key in enumerate(schema.keys) if key}
        for row in rows
    ]

    updated: Set[int] = set()
    for profile in profiles:
        domains = [d for d in profile.get("domains", []) if d]
        if not domains:
            continue
        for i, row in enumerate(rows):
            if i in updated:
                continue
            if row[domain_idx] and not overwrite:
                continue
            if not match_fn(profile, row_dicts[i]):
                continue
            row[domain_idx] = domains[0]
            for j in legacy_idx:
                row[j] = ""
            updated.add(i)
            break

    if updated or column_added:
        _write_all(path, header, rows)
    logger.info(f"Merged {len(updated)} domain(s) into {path.name} from {len(profiles)} profile(s)")
    return len(updated)


@best_effort("deduplicate csv", component="csv_store", fallback_value=0)
def deduplicate_by_key(file_path: PathLike, key_aliases: Sequence[str] = DEFAULT_KEY_ALIASES) -> int:
    """
    Keep only the first row per normalized key value.

    Rows with an empty key are always kept. The file is rewritten with its
    original column order; it is left untouched if missing, empty, or no
    alias matches a header cell.

    Returns:
        Number of rows removed.
    """
    path = Path(file_path)
    if not _has_content(path):
        return 0

    header, rows = read_rows(path)
    idx = _find_key_index(header, key_aliases)
    if idx is None:
        logger.debug(f"No key column in {path.name}; skipping dedup")
        return 0

    seen: Set[str] = set()
    kept: List[List[str]] = []
    for row in rows:
        key = normalize_key(row[idx])
        if key:
            if key in seen:
                continue
            seen.add(key)
        kept.append(row)

    _write_all(path, header, kept)
    removed = len(rows) - len(kept)
    if removed:
        logger.info(f"Removed {removed} duplicate row(s) from {path.name}")
    return removed
