# Overview: Pytest coverage for audit recording, filtering and keyset pagination.

from datetime import datetime, timedelta

import pytest

from pharmaledger.models import AuditLogEntry
from pharmaledger.services.audit_service import AuditQuery, decode_cursor, encode_cursor
from pharmaledger.services.errors import InvalidRequest
from pharmaledger.services.mutation_service import Actor


def _note(facade, actor, n, *, category="admin", resource_type="note"):
    outcome = facade.record(
        actor,
        action="note.added",
        resource_type=resource_type,
        resource_id=n,
        category=category,
        details={"n": n},
    )
    assert outcome.ok, outcome.error
    return outcome.value.resource_id


class TestRecord:

    def test_unknown_category_is_refused(self, db_session, facade, actor):
        outcome = facade.record(actor, action="x", resource_type="note", resource_id=1, category="gossip")

        assert outcome.error_kind == "invalid_request"
        assert db_session.query(AuditLogEntry).count() == 0

    def test_entry_captures_actor_and_snapshots(self, db_session, facade, actor):
        entry_id = facade.record(
            actor,
            action="note.added",
            resource_type="note",
            resource_id=42,
            category="admin",
            before={"text": None},
            after={"text": "hello"},
        ).value.audit_entry_id

        entry = db_session.get(AuditLogEntry, entry_id)
        assert entry.org_id == actor.org_id
        assert entry.actor_id == actor.actor_id
        assert entry.resource_id == "42"
        assert entry.before == {"text": None}
        assert entry.after == {"text": "hello"}

    def test_rolled_back_mutation_leaves_no_entry(self, db_session, facade, actor, make_product):
        product = make_product(1)
        count = db_session.query(AuditLogEntry).count()

        facade.apply_movement(actor, product_id=product.id, quantity_delta=-5, source_kind="sale")

        assert db_session.query(AuditLogEntry).count() == count


class TestQuery:

    def test_newest_first(self, facade, actor):
        ids = [_note(facade, actor, n) for n in range(5)]

        seen = [entry.id for entry in facade.query(actor)]

        assert seen == list(reversed(ids))

    def test_filters_combine(self, facade, actor):
        _note(facade, actor, 1, category="admin")
        wanted = _note(facade, actor, 2, category="credit", resource_type="credit_account")
        _note(facade, actor, 3, category="credit", resource_type="order")
        _note(facade, Actor(actor_id=99, org_id=actor.org_id), 4, category="credit", resource_type="credit_account")

        filters = AuditQuery(category="credit", resource_type="credit_account", actor_id=actor.actor_id)
        seen = [entry.id for entry in facade.query(actor, filters)]

        assert seen == [wanted]

    def test_date_range_is_inclusive(self, db_session, facade, actor):
        entry_id = _note(facade, actor, 1)
        stamp = db_session.get(AuditLogEntry, entry_id).created_at

        exact = list(facade.query(actor, AuditQuery(start=stamp, end=stamp)))
        before = list(facade.query(actor, AuditQuery(end=stamp - timedelta(seconds=1))))

        assert [e.id for e in exact] == [entry_id]
        assert before == []

    def test_other_org_entries_are_invisible(self, facade, actor, other_actor):
        _note(facade, other_actor, 1)

        assert list(facade.query(actor)) == []

    def test_iteration_is_lazy_and_bounded_by_snapshot(self, facade, actor):
        for n in range(5):
            _note(facade, actor, n)

        walk = facade.query(actor, page_size=2)
        first = next(walk)
        late = _note(facade, actor, 99)
        rest = list(walk)

        seen = [first.id] + [e.id for e in rest]
        assert late not in seen
        assert len(seen) == 5
        assert seen == sorted(seen, reverse=True)

    def test_page_size_must_be_positive(self, facade, actor):
        with pytest.raises(InvalidRequest):
            list(facade.query(actor, page_size=0))

    def test_default_page_size_applies_only_when_omitted(self, facade, actor):
        ids = [_note(facade, actor, n) for n in range(3)]

        assert [e.id for e in facade.query(actor)] == list(reversed(ids))
        with pytest.raises(InvalidRequest):
            list(facade.query(actor, page_size=-1))


class TestPage:

    def test_cursor_walks_all_entries_once(self, facade, actor):
        ids = [_note(facade, actor, n) for n in range(7)]

        seen, cursor = [], None
        while True:
            page = facade.page(actor, cursor=cursor, limit=3)
            seen.extend(entry.id for entry in page.items)
            cursor = page.next_cursor
            if cursor is None:
                break

        assert seen == list(reversed(ids))

    def test_last_page_has_no_cursor(self, facade, actor):
        _note(facade, actor, 1)

        page = facade.page(actor, limit=5)

        assert len(page.items) == 1
        assert page.next_cursor is None

    def test_zero_limit_is_rejected(self, facade, actor):
        _note(facade, actor, 1)

        with pytest.raises(InvalidRequest):
            facade.page(actor, limit=0)

    def test_invalid_cursor_is_rejected(self, facade, actor):
        with pytest.raises(InvalidRequest):
            facade.page(actor, cursor="yesterday")

    def test_cursor_round_trip(self, db_session, facade, actor):
        entry = db_session.get(AuditLogEntry, _note(facade, actor, 1))

        created_at, entry_id = decode_cursor(encode_cursor(entry))

        assert entry_id == entry.id
        assert created_at == entry.created_at
        assert isinstance(created_at, datetime)
