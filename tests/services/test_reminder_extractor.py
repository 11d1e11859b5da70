from __future__ import annotations

from datetime import datetime, timedelta, timezone

from search_hub.schemas.reminders import ReminderStatus
from search_hub.services.reminder_extractor import (
    extract_remind_commands,
    parse_remind_attributes,
    resolve_when_text,
)

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_parse_attributes_unescapes_markdown_underscores() -> None:
    attrs = parse_remind_attributes(r"id=r\_abc, Status=Done, iso=2025-01-02T09:00:00Z, junk")
    assert attrs == {"id": "r_abc", "status": "Done", "iso": "2025-01-02T09:00:00Z"}


def test_bracket_directive_with_explicit_iso() -> None:
    [reminder] = extract_remind_commands("Notes\n\n[[remind: tomorrow 9am | iso=2025-01-02T09:00:00Z]]", now=NOW)

    assert reminder.kind == "remind"
    assert reminder.when_text == "tomorrow 9am"
    assert reminder.when_iso == "2025-01-02T09:00:00Z"
    assert reminder.status == ReminderStatus.SCHEDULED
    assert reminder.id.startswith("r_")


def test_percent_directive_with_id_and_status() -> None:
    [reminder] = extract_remind_commands(
        "%%remind: 2025-03-14 10:00 | status=done, id=r\\_fixed%%", now=NOW
    )

    assert reminder.id == "r_fixed"
    assert reminder.status == ReminderStatus.DONE
    assert reminder.when_iso == "2025-03-14T10:00:00.000Z"


def test_relative_time_resolves_against_now() -> None:
    resolved = resolve_when_text("in 2 days", now=NOW)
    assert resolved is not None
    assert resolved.startswith((NOW + timedelta(days=2)).strftime("%Y-%m-%d"))
    assert resolved.endswith("Z")


def test_unresolvable_time_yields_no_iso() -> None:
    [reminder] = extract_remind_commands("[[remind: xyzzy]]", now=NOW)

    assert reminder.when_text == "xyzzy"
    assert reminder.when_iso is None
    assert reminder.target_time() is None


def test_unknown_status_falls_back_to_scheduled() -> None:
    [reminder] = extract_remind_commands("[[remind: xyzzy | status=someday]]", now=NOW)
    assert reminder.status == ReminderStatus.SCHEDULED


def test_derived_ids_are_stable_and_distinct_per_occurrence() -> None:
    content = "[[remind: xyzzy]] and again [[remind: xyzzy]] and %%remind: plugh%%"

    first = extract_remind_commands(content, now=NOW)
    second = extract_remind_commands(content, now=NOW + timedelta(days=3))

    assert [r.id for r in first] == [r.id for r in second]
    assert len({r.id for r in first}) == 3
    assert [r.when_text for r in first] == ["xyzzy", "xyzzy", "plugh"]


def test_directives_are_returned_in_document_order() -> None:
    content = "[[remind: plugh | id=first]] then %%remind: xyzzy | id=second%% then [[remind: plugh | id=third]]"

    assert [r.id for r in extract_remind_commands(content, now=NOW)] == ["first", "second", "third"]


def test_content_without_directives() -> None:
    assert extract_remind_commands("", now=NOW) == []
    assert extract_remind_commands("remind me later, maybe [[not a directive]]", now=NOW) == []
