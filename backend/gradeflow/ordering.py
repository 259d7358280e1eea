"""Ordering of a subject's lessons and grading-period markers.

Lessons and markers of one subject share a single `order_index`
sequence. After every operation in this module the combined set of
indices is exactly `1..N`, with no duplicates and no gaps.

`SubjectSequence` stages its changes on the session without committing;
callers wrap each operation in `database.atomic` so that the shifts and
the insert/delete/move land in one transaction or not at all.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy import func, update
from sqlmodel import Session, select

from . import models

logger = logging.getLogger("gradeflow.ordering")

SequencedItem = Union[models.Lesson, models.GradingPeriodMarker]
SEQUENCED_MODELS = (models.Lesson, models.GradingPeriodMarker)


@dataclass
class SequenceEntry:
    kind: str
    item: SequencedItem

    def to_dict(self) -> dict:
        out = {
            "kind": self.kind,
            "id": self.item.id,
            "name": self.item.name,
            "order_index": self.item.order_index,
        }
        if self.kind == "lesson":
            out["category_id"] = self.item.category_id
            out["points"] = self.item.points
        return out


def kind_of(item: SequencedItem) -> str:
    return "lesson" if isinstance(item, models.Lesson) else "marker"


class SubjectSequence:
    """Index bookkeeping for one subject across both sequenced tables."""

    def __init__(self, session: Session, subject_id: int):
        self.session = session
        self.subject_id = subject_id

    def max_index(self) -> int:
        top = 0
        for model in SEQUENCED_MODELS:
            stmt = select(func.max(model.order_index)).where(model.subject_id == self.subject_id)
            top = max(top, self.session.exec(stmt).one() or 0)
        return top

    def next_index(self) -> int:
        return self.max_index() + 1

    def lock(self) -> None:
        """Claim the subject row before the current indices are read.

        The UPDATE takes SQLite's write lock (a row lock on other
        databases) for the rest of the transaction, so concurrent changes to
        the same sequence run one after another.
        """
        stmt = update(models.Subject).where(models.Subject.id == self.subject_id)
        self.session.exec(stmt.values(updated_at=models.utcnow()))

    def entries(self) -> List[SequenceEntry]:
        """Lessons and markers interleaved by `order_index` (lessons first on ties)."""
        out = []
        for model in SEQUENCED_MODELS:
            stmt = select(model).where(model.subject_id == self.subject_id)
            out.extend(SequenceEntry(kind_of(item), item) for item in self.session.exec(stmt).all())
        out.sort(key=lambda e: (e.item.order_index, 0 if e.kind == "lesson" else 1, e.item.id or 0))
        return out

    def indices(self) -> List[int]:
        return [e.item.order_index for e in self.entries()]

    def is_dense(self) -> bool:
        indices = self.indices()
        return indices == list(range(1, len(indices) + 1))

    def _shift(self, delta: int, lower: int, upper: Optional[int] = None) -> None:
        """Add `delta` to every index in `[lower, upper]` in both tables."""
        for model in SEQUENCED_MODELS:
            stmt = update(model).where(model.subject_id == self.subject_id, model.order_index >= lower)
            if upper is not None:
                stmt = stmt.where(model.order_index <= upper)
            self.session.exec(stmt.values(order_index=model.order_index + delta))

    def insert(self, item: SequencedItem, position: Optional[int] = None) -> int:
        """Place a new (not yet added) item at `position`, opening a slot for it.

        A missing position appends; an out-of-range one is clamped to
        `[1, next_index]`.
        """
        self.lock()
        next_index = self.next_index()
        if position is None or position > next_index:
            position = next_index
        position = max(1, position)
        if position < next_index:
            self._shift(+1, position)
        item.subject_id = self.subject_id
        item.order_index = position
        self.session.add(item)
        self.session.flush()
        logger.debug("inserted %s %s at %d in subject %d", kind_of(item), item.id, position, self.subject_id)
        return position

    def append_many(self, items: List[SequencedItem]) -> List[int]:
        """Append items after the current end, keeping their given order."""
        self.lock()
        start = self.next_index()
        for offset, item in enumerate(items):
            item.subject_id = self.subject_id
            item.order_index = start + offset
            self.session.add(item)
        self.session.flush()
        return [start + offset for offset in range(len(items))]

    def remove(self, item: SequencedItem) -> int:
        """Delete `item` and close the gap it leaves."""
        self.lock()
        position = item.order_index
        self.session.delete(item)
        self.session.flush()
        self._shift(-1, position + 1)
        logger.debug("removed %s at %d in subject %d", kind_of(item), position, self.subject_id)
        return position

    def move(self, item: SequencedItem, new_index: int) -> int:
        """Move an existing item to `new_index`, clamped to `[1, max_index]`."""
        self.lock()
        old_index = item.order_index
        new_index = max(1, min(new_index, self.max_index()))
        if new_index == old_index:
            return old_index
        if new_index > old_index:
            self._shift(-1, old_index + 1, new_index)
        else:
            self._shift(+1, new_index, old_index - 1)
        item.order_index = new_index
        self.session.add(item)
        self.session.flush()
        logger.debug("moved %s %s from %d to %d", kind_of(item), item.id, old_index, new_index)
        return new_index

    def resequence(self) -> int:
        """Renumber the combined sequence to `1..N`; return how many rows changed."""
        self.lock()
        changed = 0
        for position, entry in enumerate(self.entries(), start=1):
            if entry.item.order_index != position:
                entry.item.order_index = position
                self.session.add(entry.item)
                changed += 1
        self.session.flush()
        if changed:
            logger.info("resequenced subject %d (%d rows changed)", self.subject_id, changed)
        return changed
