"""Extraction of inline reminder directives from document markdown.

Two marker forms are recognised::

    %%remind: next friday 2pm | status=scheduled, id=r_abc%%
    [[remind: tomorrow 9am | iso=2025-01-02T09:00:00Z]]

The text before ``|`` is the human ``whenText``; the optional attribute
list after it may carry ``iso`` (an explicit timestamp that wins over the
parsed text), ``status`` and ``id``.
"""
from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Optional

import dateparser
from dateparser.search import search_dates

from ..schemas.reminders import RemindCommandPayload, ReminderStatus

logger = logging.getLogger(__name__)

_PERCENT_RE = re.compile(r"%%\s*remind\s*:\s*([^|%]+?)(?:\|([^%]+))?\s*%%", re.IGNORECASE)
_BRACKET_RE = re.compile(r"\[\[\s*remind\s*:\s*([^|\]]+?)(?:\|([^\]]+))?\s*\]\]", re.IGNORECASE)

_VALID_STATUSES = {status.value for status in ReminderStatus}


def parse_remind_attributes(raw: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    if not raw:
        return attrs
    for pair in raw.split(","):
        key, sep, value = pair.partition("=")
        key, value = key.strip().lower(), value.strip()
        if sep and key and value:
            # Editors escape underscores in markdown (r\_abc -> r_abc).
            attrs[key] = value.replace("\\_", "_")
    return attrs


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def resolve_when_text(when_text: str, *, now: Optional[datetime] = None) -> Optional[str]:
    """Resolve natural-language time to an ISO timestamp, or ``None`` when it cannot be."""
    if not when_text:
        return None
    now = now or datetime.now(timezone.utc)
    base = now.astimezone(timezone.utc).replace(tzinfo=None)
    parser_settings = {
        "RELATIVE_BASE": base,
        "TIMEZONE": "UTC",
        "TO_TIMEZONE": "UTC",
        "RETURN_AS_TIMEZONE_AWARE": True,
        "PREFER_DATES_FROM": "future",
    }
    parsed = dateparser.parse(when_text, languages=["en"], settings=parser_settings)
    if parsed is None:
        # Directive text like "call Bob @ tomorrow 3pm": look for a date inside it.
        found = search_dates(when_text, languages=["en"], settings=parser_settings)
        if found:
            parsed = found[0][1]
    return _to_iso(parsed) if parsed else None


def _derived_id(when_text: str, occurrence: int) -> str:
    digest = hashlib.sha1(f"{when_text.lower()}#{occurrence}".encode("utf-8")).hexdigest()
    return f"r_{digest[:10]}"


def extract_remind_commands(content: str, *, now: Optional[datetime] = None) -> list[RemindCommandPayload]:
    if not content:
        return []

    matches = sorted(
        list(_PERCENT_RE.finditer(content)) + list(_BRACKET_RE.finditer(content)),
        key=lambda match: match.start(),
    )

    reminders: list[RemindCommandPayload] = []
    occurrences: dict[str, int] = {}
    for match in matches:
        when_text = (match.group(1) or "").strip()
        attrs = parse_remind_attributes((match.group(2) or "").strip())

        when_iso = attrs.get("iso") or resolve_when_text(when_text, now=now)
        if when_iso is None:
            logger.debug("reminder.extract.unresolved when_text=%r", when_text)

        status = attrs.get("status", ReminderStatus.SCHEDULED.value).lower()
        if status not in _VALID_STATUSES:
            status = ReminderStatus.SCHEDULED.value

        reminder_id = attrs.get("id")
        if not reminder_id:
            key = when_text.lower()
            occurrences[key] = occurrences.get(key, 0) + 1
            reminder_id = _derived_id(when_text, occurrences[key])

        reminders.append(
            RemindCommandPayload(
                id=reminder_id,
                status=status,
                when_text=when_text,
                when_iso=when_iso,
            )
        )
    return reminders
