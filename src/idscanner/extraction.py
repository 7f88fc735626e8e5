from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import date
from typing import Any

from .models import ExtractedFields, FieldCandidate, NameParts

# Letters OCR commonly produces in place of digits on the card's number fields.
_DIGIT_FIXUPS = str.maketrans(
    {
        "o": "0",
        "O": "0",
        "l": "1",
        "I": "1",
        "|": "1",
        "z": "2",
        "Z": "2",
        "s": "5",
        "S": "5",
        "b": "8",
        "B": "8",
    }
)

BIRTH_YEAR_RANGE = (1920, 2015)
ISSUE_YEAR_RANGE = (2000, 2030)

EXCLUDED_WORDS = frozenset(
    {
        "JAMHURI", "YA", "KENYA", "REPUBLIC", "OF", "THE", "AND", "FOR",
        "SERIAL", "NUMBER", "ID", "FULL", "NAMES", "NAME", "DATE", "BIRTH",
        "SEX", "MALE", "FEMALE", "DISTRICT", "PLACE", "ISSUE", "HOLDER",
        "SIGN", "SIGNATURE", "NATIONAL", "IDENTITY", "CARD", "GOK",
        "DIVISION", "LOCATION", "SOUTH", "NORTH", "EAST", "WEST", "CENTRAL",
        "BORN", "DOB", "ISSUED", "SURNAME", "SURNAMES", "GIVEN", "GIVENNAME",
        "GIVENNAMES",
    }
)

_FIELD_LABEL_WORDS = frozenset(
    {"DATE", "BIRTH", "SEX", "ID", "SURNAME", "NUMBER", "DISTRICT", "PLACE", "ISSUE", "SERIAL", "DOB"}
)

# Label-anchored strategies score at or above this.
LABEL_SCORE = 0.7


def fix_ocr_digits(text: str) -> str:
    return text.translate(_DIGIT_FIXUPS)


def split_lines(text: str) -> list[str]:
    return [line.strip() for line in text.split("\n") if line.strip()]


@dataclass(frozen=True, slots=True)
class Strategy:
    """One way of finding a field; ``find(text, lines)`` yields values in document order."""

    name: str
    score: float
    find: Callable[[str, list[str]], Iterable[Any]]


def collect_candidates(strategies: Iterable[Strategy], text: str, lines: list[str]) -> list[FieldCandidate]:
    out: list[FieldCandidate] = []
    for strategy in strategies:
        for value in strategy.find(text, lines):
            out.append(FieldCandidate(value=value, score=strategy.score, strategy=strategy.name))
    return out


def select_candidate(candidates: Iterable[FieldCandidate], exclude: Iterable[Any] = ()) -> FieldCandidate | None:
    # Strict comparison keeps the earliest candidate on ties.
    skip = set(exclude)
    best: FieldCandidate | None = None
    for candidate in candidates:
        if candidate.value in skip:
            continue
        if best is None or candidate.score > best.score:
            best = candidate
    return best


def _first_line_index(lines: list[str], predicates: Iterable[Callable[[str], bool]]) -> int:
    """Index of the first line matching the most specific predicate that matches anything."""
    uppers = [line.upper().strip() for line in lines]
    for predicate in predicates:
        for idx, upper in enumerate(uppers):
            if predicate(upper):
                return idx
    return -1


# --- ID number -----------------------------------------------------------------

_ID_LABEL_PATTERNS = (
    re.compile(r"ID\s*NUMBER\s*[:.]{0,2}\s*(\d{7,8})(?!\d)", re.I),
    re.compile(r"ID\s*NO\s*[:.]{0,2}\s*(\d{7,8})(?!\d)", re.I),
    re.compile(r"ID[:.]{0,2}\s*(\d{7,8})(?!\d)", re.I),
)
_NUMBER_LABEL_RE = re.compile(r"NUMBER\s*[:.]{0,2}\s*(\d{7,8})(?!\d)", re.I)
_ID_OCR_ALPHABET_PATTERNS = (
    re.compile(r"ID\s*NUMBER\s*[:.]{0,2}\s*([0-9OoIlZzSsBb|]{7,8})(?![0-9OoIlZzSsBb|])", re.I),
    re.compile(r"ID\s*NO\s*[:.]{0,2}\s*([0-9OoIlZzSsBb|]{7,8})(?![0-9OoIlZzSsBb|])", re.I),
)
# "ID NUMBER" is often read as "omens" / "omen".
_ID_GARBLED_RE = re.compile(r"[o0][mn]e?[mn]s?\s*[:.]?\s*(\d{7,8})(?!\d)", re.I)
_ID_AFTER_SERIAL_RE = re.compile(r"(?<!\d)\d{9}\s+\S+\s+(\d{7,8})(?!\d)")
_ID_TOKEN_RE = re.compile(r"(?<!\d)(\d{7,8})(?!\d)")
_NUMERIC_TOKEN_RE = re.compile(r"(?<!\d)\d{7,9}(?!\d)")


def _id_by_label(text: str, lines: list[str]) -> Iterator[str]:
    for pattern in _ID_LABEL_PATTERNS:
        for match in pattern.finditer(text):
            yield match.group(1)


def _id_by_number_label(text: str, lines: list[str]) -> Iterator[str]:
    for match in _NUMBER_LABEL_RE.finditer(text):
        if "SERIAL" in text[max(0, match.start() - 8) : match.start()].upper():
            continue
        yield match.group(1)


def _id_by_ocr_alphabet(text: str, lines: list[str]) -> Iterator[str]:
    for pattern in _ID_OCR_ALPHABET_PATTERNS:
        for match in pattern.finditer(text):
            raw = match.group(1)
            if sum(ch.isdigit() for ch in raw) < 5:
                continue
            yield fix_ocr_digits(raw)


def _id_by_garbled_label(text: str, lines: list[str]) -> Iterator[str]:
    for match in _ID_GARBLED_RE.finditer(text):
        yield match.group(1)


def _id_after_serial(text: str, lines: list[str]) -> Iterator[str]:
    for match in _ID_AFTER_SERIAL_RE.finditer(text):
        yield match.group(1)


def _id_on_id_line(text: str, lines: list[str]) -> Iterator[str]:
    for line in lines:
        upper = line.upper()
        if "ID" not in upper or "SERIAL" in upper:
            continue
        for match in _ID_TOKEN_RE.finditer(fix_ocr_digits(line)):
            yield match.group(1)


def _id_in_top_lines(text: str, lines: list[str]) -> Iterator[str]:
    for line in lines[:8]:
        for token in _NUMERIC_TOKEN_RE.findall(fix_ocr_digits(line)):
            if len(token) in (7, 8):
                yield token


ID_NUMBER_STRATEGIES = (
    Strategy("id_label", 1.0, _id_by_label),
    Strategy("number_label", 0.9, _id_by_number_label),
    Strategy("id_label_ocr_alphabet", 0.85, _id_by_ocr_alphabet),
    Strategy("id_label_garbled", 0.8, _id_by_garbled_label),
    Strategy("after_serial", 0.7, _id_after_serial),
    Strategy("id_line", 0.5, _id_on_id_line),
    Strategy("top_lines", 0.3, _id_in_top_lines),
)


# --- Serial number ---------------------------------------------------------------

_SERIAL_LABEL_PATTERNS = (
    re.compile(r"SERIAL\s*NUMBER\s*[:.]{0,2}\s*(\d{8,9})(?!\d)", re.I),
    re.compile(r"SERIAL\s*NO\s*[:.]{0,2}\s*(\d{8,9})(?!\d)", re.I),
)
_SERIAL_GARBLED_PATTERNS = (
    re.compile(r"se[ar]i?[an]?l?\s*n[o0u]m[bs]?e?r?\s*[:.]?\s*(\d{8,9})(?!\d)", re.I),
    re.compile(r"sea\s*n[o0]m[bs]e?r?\s*[:.]?\s*(\d{8,9})(?!\d)", re.I),
)
_SERIAL_LINE_RE = re.compile(r"\bSE[AR]", re.I)
_SERIAL_TOKEN_RE = re.compile(r"(?<!\d)(\d{8,9})(?!\d)")
_NINE_DIGITS_RE = re.compile(r"(?<!\d)\d{9}(?!\d)")


def _serial_by_label(text: str, lines: list[str]) -> Iterator[str]:
    for pattern in _SERIAL_LABEL_PATTERNS:
        for match in pattern.finditer(text):
            yield match.group(1)


def _serial_by_garbled_label(text: str, lines: list[str]) -> Iterator[str]:
    for pattern in _SERIAL_GARBLED_PATTERNS:
        for match in pattern.finditer(text):
            yield match.group(1)


def _serial_on_serial_line(text: str, lines: list[str]) -> Iterator[str]:
    for line in lines:
        upper = line.upper()
        if "SERIAL" in upper or "SEA " in upper or _SERIAL_LINE_RE.search(line):
            for match in _SERIAL_TOKEN_RE.finditer(line):
                yield match.group(1)


def _serial_in_top_lines(text: str, lines: list[str]) -> Iterator[str]:
    for line in lines[:5]:
        yield from _NINE_DIGITS_RE.findall(line)


SERIAL_NUMBER_STRATEGIES = (
    Strategy("serial_label", 1.0, _serial_by_label),
    Strategy("serial_label_garbled", 0.8, _serial_by_garbled_label),
    Strategy("serial_line", 0.5, _serial_on_serial_line),
    Strategy("top_lines", 0.3, _serial_in_top_lines),
)


# --- Names ---------------------------------------------------------------------

_NAME_CHARS_RE = re.compile(r"^[A-Z'\s-]+$")
_CAPS_PHRASE_RE = re.compile(r"\b[A-Z][A-Z']+(?:[ \t]+[A-Z][A-Z']+){1,3}\b")
_FULL_NAMES_LABEL_RE = re.compile(r"FULL\s*NAMES?", re.I)


def clean_name(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z'\s-]", " ", value)
    return re.sub(r"\s+", " ", cleaned).strip().upper()


def name_tokens(value: str) -> list[str]:
    return [token for token in clean_name(value).split(" ") if token and token not in EXCLUDED_WORDS]


def _continues_name(line: str) -> bool:
    upper = line.strip().upper()
    if not upper or len(upper) >= 30 or not _NAME_CHARS_RE.match(upper):
        return False
    return not any(word in _FIELD_LABEL_WORDS for word in upper.split())


def _parts_from_tokens(tokens: list[str]) -> NameParts:
    return NameParts(
        full_names=" ".join(tokens),
        first_name=tokens[0],
        middle_name=" ".join(tokens[1:-1]) or None,
        last_name=tokens[-1],
    )


def _is_surname_label(upper: str) -> bool:
    return upper in {"SURNAME", "SURNAMES"} or (upper.startswith("SURNAME") and len(upper) < 15)


def _is_given_name_label(upper: str) -> bool:
    if upper in {"GIVEN NAME", "GIVEN NAMES", "GIVENNAME", "GIVENNAMES"}:
        return True
    return upper.startswith("GIVEN NAME") and len(upper) < 20


def _names_surname_given(text: str, lines: list[str]) -> Iterator[NameParts]:
    surname_idx = _first_line_index(lines, (_is_surname_label,))
    given_idx = _first_line_index(lines, (_is_given_name_label,))
    if surname_idx == -1 and given_idx == -1:
        return

    surname: str | None = None
    if surname_idx != -1 and surname_idx + 1 < len(lines):
        surname = " ".join(name_tokens(lines[surname_idx + 1])) or None

    given: list[str] = []
    if given_idx != -1 and given_idx + 1 < len(lines):
        candidate = lines[given_idx + 1]
        if given_idx + 2 < len(lines) and _continues_name(lines[given_idx + 2]):
            candidate = f"{candidate} {lines[given_idx + 2]}"
        given = name_tokens(candidate)

    if not surname and not given:
        return

    tokens = given + ([surname] if surname else [])
    yield NameParts(
        full_names=" ".join(tokens),
        first_name=given[0] if given else None,
        middle_name=" ".join(given[1:]) or None,
        last_name=surname,
    )


def _names_full_names_label(text: str, lines: list[str]) -> Iterator[NameParts]:
    for idx, line in enumerate(lines):
        upper = line.upper().strip()
        if not ("FULL NAMES" in upper or "FULLNAMES" in upper or upper == "FULL NAME"):
            continue

        # Value printed on the label line itself.
        tail = name_tokens(_FULL_NAMES_LABEL_RE.split(line, maxsplit=1)[-1])
        if len(tail) >= 2:
            yield _parts_from_tokens(tail)

        if idx + 1 >= len(lines):
            continue
        candidate = lines[idx + 1]
        if idx + 2 < len(lines) and _continues_name(lines[idx + 2]):
            candidate = f"{candidate} {lines[idx + 2]}"

        cleaned = clean_name(candidate)
        if len(cleaned) < 3:
            continue
        tokens = name_tokens(cleaned)
        if len(tokens) >= 2:
            yield _parts_from_tokens(tokens)


def _names_caps_phrase(text: str, lines: list[str]) -> Iterator[NameParts]:
    for line in lines:
        for match in _CAPS_PHRASE_RE.finditer(line):
            words = [w for w in match.group(0).split() if len(w) > 1 and w.upper() not in EXCLUDED_WORDS]
            if 2 <= len(words) <= 4:
                yield _parts_from_tokens(words)


NAME_STRATEGIES = (
    Strategy("surname_given_labels", 1.0, _names_surname_given),
    Strategy("full_names_label", 0.9, _names_full_names_label),
    Strategy("caps_phrase", 0.2, _names_caps_phrase),
)


# --- Dates ---------------------------------------------------------------------

_DATE_PATTERNS = (
    re.compile(r"(?<!\d)(\d{1,2})\.(\d{1,2})\.(\d{4})(?!\d)"),
    re.compile(r"(?<!\d)(\d{1,2})\.\s*(\d{1,2})\.\s*(\d{4})(?!\d)"),
    re.compile(r"(?<!\d)(\d{1,2})[/-](\d{1,2})[/-](\d{4})(?!\d)"),
    re.compile(r"(?<!\d)(\d{1,2})[ \t]+(\d{1,2})[ \t]+(\d{4})(?!\d)"),
    re.compile(r"(?<!\d)(\d{1,2})[ \t]*[,.][ \t]*(\d{1,2})[ \t]*[,.][ \t]*(\d{4})(?!\d)"),
)

_BIRTH_LABELS: tuple[Callable[[str], bool], ...] = (
    lambda up: "DATE OF BIRTH" in up,
    lambda up: "DOB" in up,
    lambda up: up == "DATE",
    lambda up: "BIRTH" in up and "DISTRICT" not in up,
)
_ISSUE_LABELS: tuple[Callable[[str], bool], ...] = (
    lambda up: "DATE OF ISSUE" in up,
    lambda up: "ISSUED" in up,
    lambda up: "ISSUE" in up and "PLACE" not in up,
)


def to_iso_date(day_s: str, month_s: str, year_s: str, year_range: tuple[int, int]) -> str | None:
    year = int(year_s)
    if not year_range[0] <= year <= year_range[1]:
        return None
    try:
        return date(year, int(month_s), int(day_s)).isoformat()
    except ValueError:
        return None


def find_dates(line: str, year_range: tuple[int, int]) -> Iterator[str]:
    for pattern in _DATE_PATTERNS:
        for match in pattern.finditer(line):
            iso = to_iso_date(*match.groups(), year_range=year_range)
            if iso:
                yield iso


def _labeled_date(labels: tuple[Callable[[str], bool], ...], year_range: tuple[int, int]):
    def find(text: str, lines: list[str]) -> Iterator[str]:
        idx = _first_line_index(lines, labels)
        if idx == -1:
            return
        for line in lines[idx : idx + 3]:
            yield from find_dates(line, year_range)

    return find


def _unlabeled_date(labels: tuple[Callable[[str], bool], ...], year_range: tuple[int, int]):
    def find(text: str, lines: list[str]) -> Iterator[str]:
        if _first_line_index(lines, labels) != -1:
            return
        for line in lines:
            yield from find_dates(line, year_range)

    return find


DATE_OF_BIRTH_STRATEGIES = (
    Strategy("birth_label", 1.0, _labeled_date(_BIRTH_LABELS, BIRTH_YEAR_RANGE)),
    Strategy("whole_text", 0.3, _unlabeled_date(_BIRTH_LABELS, BIRTH_YEAR_RANGE)),
)
DATE_OF_ISSUE_STRATEGIES = (
    Strategy("issue_label", 1.0, _labeled_date(_ISSUE_LABELS, ISSUE_YEAR_RANGE)),
    Strategy("whole_text", 0.3, _unlabeled_date(_ISSUE_LABELS, ISSUE_YEAR_RANGE)),
)


# --- Sex -----------------------------------------------------------------------

_FEMALE_RE = re.compile(r"\bFEMALE\b", re.I)
_MALE_RE = re.compile(r"\bMALE\b", re.I)


def _sex_near_label(text: str, lines: list[str]) -> Iterator[str]:
    idx = _first_line_index(lines, (lambda up: "SEX" in up,))
    if idx == -1:
        return
    for line in lines[idx : idx + 2]:
        upper = line.upper()
        # FEMALE contains MALE, so it has to be tested first.
        if "FEMALE" in upper:
            yield "FEMALE"
        elif "MALE" in upper:
            yield "MALE"


def _sex_anywhere(text: str, lines: list[str]) -> Iterator[str]:
    if _FEMALE_RE.search(text):
        yield "FEMALE"
    elif _MALE_RE.search(text):
        yield "MALE"


SEX_STRATEGIES = (
    Strategy("sex_label", 1.0, _sex_near_label),
    Strategy("whole_text", 0.4, _sex_anywhere),
)


# --- District of birth / place of issue ------------------------------------------

_PLACE_VALUE_RE = re.compile(r"^[A-Za-z\s]+$")


def _place_value(value: str) -> str | None:
    value = value.strip(" :.-\t")
    if len(value) <= 1 or not _PLACE_VALUE_RE.match(value):
        return None
    upper = re.sub(r"\s+", " ", value).upper()
    if any(word in _FIELD_LABEL_WORDS for word in upper.split()):
        return None
    return upper


def _place_after_label(label: Callable[[str], bool]):
    def find(text: str, lines: list[str]) -> Iterator[str]:
        idx = _first_line_index(lines, (label,))
        if idx == -1 or idx + 1 >= len(lines):
            return
        value = _place_value(lines[idx + 1])
        if value:
            yield value

    return find


def _place_on_label_line(label_re: re.Pattern[str]):
    def find(text: str, lines: list[str]) -> Iterator[str]:
        for line in lines:
            parts = label_re.split(line, maxsplit=1)
            if len(parts) < 2:
                continue
            value = _place_value(parts[1])
            if value:
                yield value

    return find


DISTRICT_OF_BIRTH_STRATEGIES = (
    Strategy("district_label", 1.0, _place_after_label(lambda up: "DISTRICT" in up)),
    Strategy("district_label_inline", 0.8, _place_on_label_line(re.compile(r"DISTRICT(?:\s+OF\s+BIRTH)?", re.I))),
)
PLACE_OF_ISSUE_STRATEGIES = (
    Strategy("place_label", 1.0, _place_after_label(lambda up: "PLACE OF ISSUE" in up)),
    Strategy("place_label_inline", 0.8, _place_on_label_line(re.compile(r"PLACE\s+OF\s+ISSUE", re.I))),
)


# --- Per-field entry points --------------------------------------------------------


def _best(strategies: Iterable[Strategy], text: str, lines: list[str], exclude: Iterable[Any] = ()) -> FieldCandidate | None:
    return select_candidate(collect_candidates(strategies, text, lines), exclude=exclude)


def _value(candidate: FieldCandidate | None) -> Any:
    return candidate.value if candidate else None


def extract_serial_number(text: str, lines: list[str]) -> str | None:
    return _value(_best(SERIAL_NUMBER_STRATEGIES, text, lines))


def extract_id_number(text: str, lines: list[str], exclude: Iterable[str] = ()) -> str | None:
    return _value(_best(ID_NUMBER_STRATEGIES, text, lines, exclude=exclude))


def extract_names(text: str, lines: list[str]) -> NameParts:
    return _value(_best(NAME_STRATEGIES, text, lines)) or NameParts()


def extract_date_of_birth(text: str, lines: list[str]) -> str | None:
    return _value(_best(DATE_OF_BIRTH_STRATEGIES, text, lines))


def extract_date_of_issue(text: str, lines: list[str]) -> str | None:
    return _value(_best(DATE_OF_ISSUE_STRATEGIES, text, lines))


def extract_sex(text: str, lines: list[str]) -> str | None:
    return _value(_best(SEX_STRATEGIES, text, lines))


def extract_district_of_birth(text: str, lines: list[str]) -> str | None:
    return _value(_best(DISTRICT_OF_BIRTH_STRATEGIES, text, lines))


def extract_place_of_issue(text: str, lines: list[str]) -> str | None:
    return _value(_best(PLACE_OF_ISSUE_STRATEGIES, text, lines))


def detect_document_type(text: str) -> str:
    lower = text.lower()
    if "jamhuri" in lower or "kenya" in lower:
        return "Kenyan National ID"
    if "passport" in lower:
        return "Passport"
    if "driver" in lower or "license" in lower:
        return "Driver's License"
    if "national" in lower or "identity" in lower:
        return "National ID"
    if "voter" in lower:
        return "Voter ID"
    if "student" in lower:
        return "Student ID"
    if "employee" in lower or "staff" in lower:
        return "Employee ID"
    return "Unknown ID Type"


def _pick_id_and_serial(text: str, lines: list[str]) -> tuple[FieldCandidate | None, FieldCandidate | None]:
    serial_candidates = collect_candidates(SERIAL_NUMBER_STRATEGIES, text, lines)
    id_candidates = collect_candidates(ID_NUMBER_STRATEGIES, text, lines)

    serial = select_candidate(serial_candidates)
    id_best = select_candidate(id_candidates)

    if serial and id_best and id_best.value == serial.value and id_best.score >= LABEL_SCORE:
        # Labelled ID wins the shared token; the serial falls back to its next candidate.
        serial = select_candidate(serial_candidates, exclude={id_best.value})
        return id_best, serial

    excluded = {serial.value} if serial else set()
    return select_candidate(id_candidates, exclude=excluded), serial


def extract_fields(text: str, lines: list[str] | None = None) -> ExtractedFields:
    if lines is None:
        lines = split_lines(text)

    id_number, serial_number = _pick_id_and_serial(text, lines)
    names = _best(NAME_STRATEGIES, text, lines)
    picks = {
        "date_of_birth": _best(DATE_OF_BIRTH_STRATEGIES, text, lines),
        "date_of_issue": _best(DATE_OF_ISSUE_STRATEGIES, text, lines),
        "sex": _best(SEX_STRATEGIES, text, lines),
        "district_of_birth": _best(DISTRICT_OF_BIRTH_STRATEGIES, text, lines),
        "place_of_issue": _best(PLACE_OF_ISSUE_STRATEGIES, text, lines),
    }
    name_parts: NameParts = names.value if names else NameParts()

    sources = {
        key: cand.strategy
        for key, cand in (("id_number", id_number), ("serial_number", serial_number), ("names", names), *picks.items())
        if cand is not None
    }

    return ExtractedFields(
        id_number=_value(id_number),
        serial_number=_value(serial_number),
        full_names=name_parts.full_names,
        first_name=name_parts.first_name,
        middle_name=name_parts.middle_name,
        last_name=name_parts.last_name,
        date_of_birth=_value(picks["date_of_birth"]),
        date_of_issue=_value(picks["date_of_issue"]),
        sex=_value(picks["sex"]),
        district_of_birth=_value(picks["district_of_birth"]),
        place_of_issue=_value(picks["place_of_issue"]),
        document_type=detect_document_type(text),
        sources=sources,
    )
