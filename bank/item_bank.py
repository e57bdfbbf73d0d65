"""
Item bank access used by the assembler.

ItemBank is the narrow interface: bounded least-used-first queries (optionally
skipping items used since a cut-off), inserts that echo ids, and usage
marking. SqlItemBank backs it with SQLAlchemy; InMemoryItemBank holds items
in a list.
"""

import itertools
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Protocol, Sequence

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from assembly.errors import BankUnavailable
from assembly.schemas import BankItem
from assembly.taxonomy import CognitiveLevel, ItemType
from bank.database import get_session_factory
from bank.models import BankItemRecord

log = logging.getLogger("bank.item_bank")


class ItemBank(Protocol):
    async def query(
        self,
        topic: str,
        cognitive_level: CognitiveLevel,
        difficulty: str,
        item_type: Optional[ItemType] = None,
        limit: int = 10,
        exclude_ids: Sequence[str] = (),
        exclude_used_since: Optional[datetime] = None,
    ) -> List[BankItem]:
        ...

    async def insert(self, items: Sequence[BankItem]) -> List[BankItem]:
        ...

    async def mark_used(self, item_id: str) -> None:
        ...


class SqlItemBank:
    def __init__(self, session_factory=None):
        self._session_factory = session_factory or get_session_factory()

    async def query(
        self,
        topic: str,
        cognitive_level: CognitiveLevel,
        difficulty: str,
        item_type: Optional[ItemType] = None,
        limit: int = 10,
        exclude_ids: Sequence[str] = (),
        exclude_used_since: Optional[datetime] = None,
    ) -> List[BankItem]:
        db = self._session_factory()
        try:
            q = (
                db.query(BankItemRecord)
                .filter(BankItemRecord.deleted.is_(False))
                .filter(BankItemRecord.approved.is_(True))
                .filter(BankItemRecord.topic.ilike(f"%{topic.strip()}%"))
                .filter(func.lower(BankItemRecord.cognitive_level) == CognitiveLevel(cognitive_level).value.lower())
                .filter(func.lower(BankItemRecord.difficulty) == difficulty.strip().lower())
            )
            if item_type is not None:
                q = q.filter(BankItemRecord.item_type == ItemType(item_type).value)
            excluded = [int(i) for i in exclude_ids if str(i).isdigit()]
            if excluded:
                q = q.filter(BankItemRecord.id.notin_(excluded))
            if exclude_used_since is not None:
                q = q.filter(or_(
                    BankItemRecord.last_used_at.is_(None),
                    BankItemRecord.last_used_at < exclude_used_since,
                ))
            rows = q.order_by(BankItemRecord.usage_count.asc(), BankItemRecord.id.asc()).limit(limit).all()
            return [row.to_bank_item() for row in rows]
        except SQLAlchemyError as e:
            raise BankUnavailable(f"Item bank query failed: {e}", {"topic": topic}) from e
        finally:
            db.close()

    async def insert(self, items: Sequence[BankItem]) -> List[BankItem]:
        if not items:
            return []
        db = self._session_factory()
        try:
            records = [BankItemRecord.from_bank_item(item) for item in items]
            db.add_all(records)
            db.commit()
            for record in records:
                db.refresh(record)
            return [record.to_bank_item() for record in records]
        except SQLAlchemyError as e:
            db.rollback()
            raise BankUnavailable(f"Item bank insert failed: {e}") from e
        finally:
            db.close()

    async def mark_used(self, item_id: str) -> None:
        db = self._session_factory()
        try:
            updated = (
                db.query(BankItemRecord)
                .filter(BankItemRecord.id == int(item_id))
                .update({
                    BankItemRecord.usage_count: BankItemRecord.usage_count + 1,
                    BankItemRecord.last_used_at: datetime.now(timezone.utc),
                })
            )
            db.commit()
            if not updated:
                log.warning(f"[BANK] mark_used: no item with id {item_id}")
        except SQLAlchemyError as e:
            db.rollback()
            raise BankUnavailable(f"mark_used failed for {item_id}: {e}") from e
        finally:
            db.close()


class InMemoryItemBank:
    """List-backed bank; assigns ids "mem-N" to items inserted without one."""

    def __init__(self, items: Iterable[BankItem] = ()):
        self._ids = itertools.count(1)
        self.items: List[BankItem] = []
        for item in items:
            self._add(item)

    def _add(self, item: BankItem) -> BankItem:
        stored = item.model_copy(update={"id": item.id or f"mem-{next(self._ids)}"})
        self.items.append(stored)
        return stored

    def get(self, item_id: str) -> Optional[BankItem]:
        return next((i for i in self.items if i.id == item_id), None)

    async def query(
        self,
        topic: str,
        cognitive_level: CognitiveLevel,
        difficulty: str,
        item_type: Optional[ItemType] = None,
        limit: int = 10,
        exclude_ids: Sequence[str] = (),
        exclude_used_since: Optional[datetime] = None,
    ) -> List[BankItem]:
        needle = topic.strip().lower()
        excluded = set(exclude_ids)
        matches = [
            i for i in self.items
            if i.approved
            and needle in i.topic.lower()
            and i.cognitive_level == cognitive_level
            and i.difficulty.lower() == difficulty.strip().lower()
            and (item_type is None or i.item_type == item_type)
            and i.id not in excluded
            and not _used_since(i, exclude_used_since)
        ]
        matches.sort(key=lambda i: (i.usage_count, i.id))
        return [i.model_copy() for i in matches[:limit]]

    async def insert(self, items: Sequence[BankItem]) -> List[BankItem]:
        return [self._add(item).model_copy() for item in items]

    async def mark_used(self, item_id: str) -> None:
        stored = self.get(item_id)
        if stored is None:
            log.warning(f"[BANK] mark_used: no item with id {item_id}")
            return
        stored.usage_count += 1
        stored.last_used_at = datetime.now(timezone.utc)


def _used_since(item: BankItem, since: Optional[datetime]) -> bool:
    if since is None or item.last_used_at is None:
        return False
    used = item.last_used_at
    if used.tzinfo is None:
        used = used.replace(tzinfo=timezone.utc)
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return used >= since
