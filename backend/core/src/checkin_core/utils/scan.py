"""Scan text normalization and ID barcode (AAMVA PDF417) parsing."""

import datetime as dt
import hashlib
import os
import re
from dataclasses import dataclass

# Membership barcodes: first match of this pattern is the membership number
MEMBERSHIP_SCAN_PATTERN = os.getenv("MEMBERSHIP_SCAN_PATTERN", r"\d+")

# AAMVA element IDs we extract, plus the common ones we only use as delimiters
AAMVA_FIELDS = {
    "DCS": "last_name",
    "DAC": "first_name",
    "DAA": "full_name",
    "DBB": "dob",
    "DBD": "issue_date",
    "DBA": "expiration_date",
    "DAQ": "id_number",
    "DAJ": "jurisdiction",
}
_DELIMITER_CODES = {
    "DCA", "DCB", "DCD", "DBC", "DAU", "DAY", "DAG", "DAI", "DAK", "DCF",
    "DCG", "DDE", "DDF", "DDG", "DAD", "DCK", "DDB", "DDA", "DDK", "DDL",
    "DAW", "DAZ", "DCI", "DCJ", "DCU", "DDC", "DDD", "DDH", "DDI", "DDJ",
}
_ALL_CODES = set(AAMVA_FIELDS) | _DELIMITER_CODES
# Lookahead so element ids glued to a subfile header ("DLDCS") are still found
_ELEMENT_RE = re.compile(r"(?=(D[A-Z]{2}))")
_SUBFILE_RE = re.compile(r"DL(D[A-Z]{2})")
_AAMVA_LINE_RE = re.compile(r"\n(?:DCS|DAC|DBD|DAQ)")


@dataclass
class ExtractedIdentity:
    """Identity fields pulled from a state ID barcode."""

    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    dob: dt.date | None = None
    expiration_date: dt.date | None = None
    id_number: str | None = None
    jurisdiction: str | None = None

    @property
    def display_name(self) -> str | None:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.full_name or self.last_name or self.first_name


def normalize_scan_text(raw: str) -> str:
    """Normalize raw scanner output.

    CRLF/CR become LF, runs of spaces/tabs collapse to one space per line,
    trailing whitespace is stripped from each line and the whole text is trimmed.
    """
    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    lines = [re.sub(r"[ \t]+", " ", line).rstrip() for line in text.split("\n")]
    return "\n".join(lines).strip()


def compute_scan_hash(normalized: str) -> str:
    """SHA-256 hex digest of normalized scan text."""
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def is_state_id_scan(normalized: str) -> bool:
    """Heuristic AAMVA detection."""
    if normalized.startswith("@"):
        return True
    if "ANSI " in normalized or "AAMVA" in normalized:
        return True
    return bool(_AAMVA_LINE_RE.search(normalized))


def parse_aamva_date(value: str | None) -> dt.date | None:
    """Parse an 8-digit AAMVA date.

    YYYYMMDD when the leading four digits are a plausible year, otherwise
    MMDDYYYY (US jurisdictions).
    """
    if not value:
        return None
    digits = re.sub(r"\D", "", value)[:8]
    if len(digits) != 8:
        return None
    try:
        year = int(digits[:4])
        if 1900 <= year <= 2100:
            return dt.date(year, int(digits[4:6]), int(digits[6:8]))
        return dt.date(int(digits[4:8]), int(digits[:2]), int(digits[2:4]))
    except ValueError:
        return None


def _keep_longest(fields: dict[str, str], code: str, value: str) -> None:
    if code in AAMVA_FIELDS and len(value) > len(fields.get(code, "")):
        fields[code] = value


def _extract_fields(normalized: str) -> dict[str, str]:
    """Pull element values out of the payload.

    Newline-separated payloads are read line by line. Scanners that strip
    separators produce a single line, which is sliced between known element
    IDs instead. When an element appears more than once the longest value wins.
    """
    fields: dict[str, str] = {}

    lines = normalized.split("\n")
    if len(lines) > 1:
        for raw_line in lines:
            line = raw_line.strip().lstrip("\x1e\x1c")
            if line[:3] not in _ALL_CODES:
                # Subfile header, e.g. "ANSI 6360...DLDAQD1234567"
                header = _SUBFILE_RE.search(line)
                if header and header.group(1) in _ALL_CODES:
                    line = line[header.start(1) :]
            _keep_longest(fields, line[:3], line[3:].strip())
        if fields:
            return fields

    positions = [
        (match.start(), match.group(1))
        for match in _ELEMENT_RE.finditer(normalized)
        if match.group(1) in _ALL_CODES
    ]
    for index, (start, code) in enumerate(positions):
        end = positions[index + 1][0] if index + 1 < len(positions) else len(normalized)
        _keep_longest(fields, code, normalized[start + 3 : end].strip())
    return fields


def _clean_name(value: str | None) -> str | None:
    if not value:
        return None
    # AAMVA truncation markers and separators
    cleaned = value.replace(",", " ").replace("$", " ").strip()
    cleaned = re.sub(r"\s+", " ", cleaned)
    if not cleaned or cleaned.upper() in {"NONE", "UNAVL"}:
        return None
    return cleaned.title()


def parse_aamva(normalized: str) -> ExtractedIdentity:
    """Extract identity fields from a normalized AAMVA payload."""
    fields = _extract_fields(normalized)

    first = _clean_name(fields.get("DAC"))
    last = _clean_name(fields.get("DCS"))
    full = _clean_name(fields.get("DAA"))
    if full and not (first and last):
        # DAA is LAST,FIRST,MIDDLE on older cards
        parts = fields["DAA"].replace("$", ",").split(",")
        parts = [p.strip() for p in parts if p.strip()]
        if len(parts) >= 2:
            last = last or _clean_name(parts[0])
            first = first or _clean_name(parts[1])

    return ExtractedIdentity(
        first_name=first,
        last_name=last,
        full_name=full,
        dob=parse_aamva_date(fields.get("DBB")),
        expiration_date=parse_aamva_date(fields.get("DBA")),
        id_number=fields.get("DAQ") or None,
        jurisdiction=fields.get("DAJ") or None,
    )


def parse_membership_number(normalized: str, pattern: str | None = None) -> str | None:
    """Extract a membership number from a generic barcode."""
    match = re.search(pattern or MEMBERSHIP_SCAN_PATTERN, normalized)
    if not match:
        return None
    return match.group(0).strip() or None
