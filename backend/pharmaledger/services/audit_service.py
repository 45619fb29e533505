# Overview: Append-only audit log; recording and read-only querying of entries.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from itertools import islice
from typing import Iterator, Optional

from sqlalchemy import and_, func, or_

from ..models import AuditLogEntry
from ..models.audit import AUDIT_CATEGORIES
from ..time_utils import normalize_datetime, parse_iso_datetime, to_utc_z
from .errors import InvalidRequest
"""
Audit Log Invariants (authoritative)

- Append-only: record() inserts, nothing updates or deletes entries.
- No domain/business logic here; ledgers decide what before/after mean.
- Entries are written inside the same DB transaction as the change they
  describe (flush, never commit), so a rolled-back mutation leaves no entry.
- Reads are ordered created_at DESC, id DESC and never flush the session.
- Date filters are inclusive on both ends.
"""


@dataclass(frozen=True)
class AuditQuery:
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    category: Optional[str] = None
    actor_id: Optional[int] = None
    action: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass(frozen=True)
class AuditPage:
    items: list
    next_cursor: Optional[str]


def encode_cursor(entry: AuditLogEntry) -> str:
    return f"{to_utc_z(entry.created_at)}|{entry.id}"


def decode_cursor(raw: str) -> tuple[datetime, int]:
    try:
        stamp, entry_id = raw.split("|")
        created_at = parse_iso_datetime(stamp)
        if created_at is None:
            raise ValueError("empty cursor timestamp")
        return created_at, int(entry_id)
    except ValueError:
        raise InvalidRequest("cursor must be in format <ISO-8601>|<id>", details={"cursor": raw})


class AuditLog:
    def __init__(self, repository):
        self.repository = repository

    def record(
        self,
        *,
        org_id: int,
        actor_id: int,
        action: str,
        resource_type: str,
        resource_id,
        category: str,
        before: dict | None = None,
        after: dict | None = None,
        details: dict | None = None,
    ) -> int:
        """
        Append one audit entry and return its id.

        The entry is flushed (so its id exists) but not committed; the caller's
        unit of work decides whether it persists.
        """
        if category not in AUDIT_CATEGORIES:
            raise InvalidRequest(
                f"Unknown audit category '{category}'",
                details={"category": category, "allowed": sorted(AUDIT_CATEGORIES)},
            )
        if not action:
            raise InvalidRequest("audit action is required")

        entry = AuditLogEntry(
            org_id=org_id,
            actor_id=actor_id,
            action=action,
            category=category,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            before=before,
            after=after,
            details=details,
        )
        self.repository.add(entry)
        self.repository.flush()
        return entry.id

    def _filtered(self, org_id: int, filters: AuditQuery):
        q = self.repository.query(AuditLogEntry).filter(AuditLogEntry.org_id == org_id)
        if filters.resource_type:
            q = q.filter(AuditLogEntry.resource_type == filters.resource_type)
        if filters.resource_id is not None:
            q = q.filter(AuditLogEntry.resource_id == str(filters.resource_id))
        if filters.category:
            q = q.filter(AuditLogEntry.category == filters.category)
        if filters.actor_id is not None:
            q = q.filter(AuditLogEntry.actor_id == filters.actor_id)
        if filters.action:
            q = q.filter(AuditLogEntry.action == filters.action)

        start = normalize_datetime(filters.start)
        end = normalize_datetime(filters.end)
        if start is not None:
            q = q.filter(AuditLogEntry.created_at >= start)
        if end is not None:
            q = q.filter(AuditLogEntry.created_at <= end)
        return q

    def _fetch(
        self,
        org_id: int,
        filters: AuditQuery,
        *,
        limit: int,
        after: tuple[datetime, int] | None = None,
        snapshot_id: int | None = None,
    ) -> list[AuditLogEntry]:
        session = self.repository.session
        with session.no_autoflush:
            q = self._filtered(org_id, filters)
            if snapshot_id is not None:
                q = q.filter(AuditLogEntry.id <= snapshot_id)
            if after is not None:
                cursor_dt, cursor_id = after
                q = q.filter(
                    or_(
                        AuditLogEntry.created_at < cursor_dt,
                        and_(AuditLogEntry.created_at == cursor_dt, AuditLogEntry.id < cursor_id),
                    )
                )
            return (
                q.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
                .limit(limit)
                .all()
            )

    def _snapshot_id(self, org_id: int) -> Optional[int]:
        session = self.repository.session
        with session.no_autoflush:
            return session.query(func.max(AuditLogEntry.id)).filter(
                AuditLogEntry.org_id == org_id
            ).scalar()

    def query(
        self, org_id: int, filters: AuditQuery | None = None, *, page_size: int = 100
    ) -> Iterator[AuditLogEntry]:
        """
        Lazily yield matching entries, newest first, one keyset page at a time.

        The highest entry id visible when iteration starts bounds the whole
        walk, so entries appended while the caller is iterating are not
        yielded and pages never shift underneath the cursor.
        """
        filters = filters or AuditQuery()
        if page_size < 1:
            raise InvalidRequest("page_size must be at least 1", details={"page_size": page_size})

        snapshot_id = self._snapshot_id(org_id)
        if snapshot_id is None:
            return

        after = None
        while True:
            rows = self._fetch(org_id, filters, limit=page_size, after=after, snapshot_id=snapshot_id)
            yield from rows
            if len(rows) < page_size:
                return
            last = rows[-1]
            after = (last.created_at, last.id)

    def page(
        self,
        org_id: int,
        filters: AuditQuery | None = None,
        *,
        cursor: str | None = None,
        limit: int = 100,
    ) -> AuditPage:
        """Single page for API callers; next_cursor is None on the last page."""
        filters = filters or AuditQuery()
        if limit < 1:
            raise InvalidRequest("limit must be at least 1", details={"limit": limit})
        after = decode_cursor(cursor) if cursor else None
        rows = self._fetch(org_id, filters, limit=limit + 1, after=after)
        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = encode_cursor(rows[-1]) if (rows and has_more) else None
        return AuditPage(items=rows, next_cursor=next_cursor)

    def resource_history(self, org_id: int, resource_type: str, resource_id, *, limit: int = 50) -> list:
        filters = AuditQuery(resource_type=resource_type, resource_id=str(resource_id))
        return list(islice(self.query(org_id, filters, page_size=limit), limit))

    def actor_activity(self, org_id: int, actor_id: int, *, limit: int = 50) -> list:
        filters = AuditQuery(actor_id=actor_id)
        return list(islice(self.query(org_id, filters, page_size=limit), limit))
