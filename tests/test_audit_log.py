"""Tests for the moderation audit trail."""

import tempfile
from pathlib import Path

from tiermod.security.audit_log import QUEUE_RESOLVED, USER_BLOCKED, AuditLogger


def test_log_and_query_events():
    audit = AuditLogger(Path(tempfile.mkdtemp()))
    audit.log_event("admin1", USER_BLOCKED, "user", "u1", {"reason": "spam"})
    audit.log_event("mod1", QUEUE_RESOLVED, "queue_item", "mod-1", {"status": "approved"})

    events = audit.get_events()
    assert len(events) == 2
    assert events[0].action == QUEUE_RESOLVED

    blocked = audit.get_events(action=USER_BLOCKED)
    assert len(blocked) == 1
    assert blocked[0].details == {"reason": "spam"}

    assert [e.actor for e in audit.get_events(resource_type="user", resource_id="u1")] == ["admin1"]
    assert audit.get_events(actor="nobody") == []


def test_corrupt_lines_are_skipped():
    base = Path(tempfile.mkdtemp())
    audit = AuditLogger(base)
    audit.log_event("admin1", USER_BLOCKED, "user", "u1")
    log_file = next(base.glob("*.jsonl"))
    with log_file.open("a") as fh:
        fh.write("{not json\n")

    assert len(audit.get_events()) == 1
