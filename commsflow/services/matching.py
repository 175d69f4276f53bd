"""Phone normalization and contact matching helpers. Pure functions, no I/O."""

import re
from typing import Iterable, Optional, Sequence

NON_DIGITS_RE = re.compile(r"\D")

# Tokens too generic to identify a single contact by name
GENERIC_NAME_TOKENS = {
    "team",
    "customer",
    "client",
    "project",
    "crew",
    "office",
    "everyone",
    "all",
}

MIN_NAME_MATCH_LENGTH = 4


def format_phone_number(phone: Optional[str]) -> str:
    """Strip everything but digits; a bare 10-digit number gets country code 1."""
    if not phone:
        return ""
    digits = NON_DIGITS_RE.sub("", phone)
    if len(digits) == 10:
        return "1" + digits
    return digits


def last_ten_digits(phone: Optional[str]) -> str:
    digits = NON_DIGITS_RE.sub("", phone or "")
    return digits[-10:]


def phones_match(left: Optional[str], right: Optional[str]) -> bool:
    left_suffix = last_ten_digits(left)
    right_suffix = last_ten_digits(right)
    if len(left_suffix) < 10 or len(right_suffix) < 10:
        return False
    return left_suffix == right_suffix


def is_phone_participant(participant: dict) -> bool:
    return (participant or {}).get("type") == "phone" and bool(participant.get("value"))


def phone_participants(participants: Iterable[dict]) -> list[dict]:
    return [p for p in participants or [] if is_phone_participant(p)]


def normalize_role(role: Optional[str]) -> str:
    return re.sub(r"[\s\-]+", "_", (role or "").strip().lower())


def role_in(role: Optional[str], role_class: Iterable[str]) -> bool:
    normalized = normalize_role(role)
    if not normalized:
        return False
    return normalized in {normalize_role(r) for r in role_class}


def _is_usable_name_query(query: str) -> bool:
    if len(query) < MIN_NAME_MATCH_LENGTH:
        return False
    tokens = set(re.split(r"[\s,]+", query))
    return not tokens.issubset(GENERIC_NAME_TOKENS)


def find_contact_by_name(contacts: Sequence, name_or_role: Optional[str]):
    """Fuzzy match a free-text name (or role) against contacts.

    Exact full name wins, then exact role, then partial name containment.
    Queries shorter than four characters or made only of generic tokens
    ("team", "customer", ...) never match.
    """
    query = (name_or_role or "").strip().lower()
    if not query or not _is_usable_name_query(query):
        return None

    for contact in contacts:
        if (contact.full_name or "").strip().lower() == query:
            return contact

    for contact in contacts:
        if (contact.role or "").strip().lower() == query:
            return contact

    for contact in contacts:
        name = (contact.full_name or "").strip().lower()
        if len(name) < MIN_NAME_MATCH_LENGTH:
            continue
        if query in name or name in query:
            return contact

    return None
