"""CLI script to renumber lesson/marker order indices of every subject.

Usage: python scripts/fix_order_indices.py [--subject-id ID] [--dry-run]

Each subject's lessons and grading-period markers are renumbered to a
dense 1..N sequence, keeping their current relative order.
"""
import sys
import argparse
import pathlib
from typing import Optional
# Ensure `backend/` is on sys.path so `gradeflow` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session, select
from gradeflow import models
from gradeflow.database import create_db_and_tables, engine
from gradeflow.ordering import SubjectSequence


def main(subject_id: Optional[int] = None, dry_run: bool = False) -> int:
    """Resequence the selected subjects and print one line per subject changed.

    Returns the total number of rows whose index changed (or would change
    with `dry_run`).
    """
    create_db_and_tables()
    total = 0
    with Session(engine) as session:
        stmt = select(models.Subject.id).order_by(models.Subject.id)
        if subject_id is not None:
            stmt = stmt.where(models.Subject.id == subject_id)
        for sid in session.exec(stmt).all():
            sequence = SubjectSequence(session, sid)
            if sequence.is_dense():
                continue
            changed = sequence.resequence()
            total += changed
            print(f'subject {sid}: {changed} rows renumbered')
        if dry_run:
            session.rollback()
            print(f'dry run: {total} rows would change')
        else:
            session.commit()
            print(f'done: {total} rows changed')
    return total


if __name__ == '__main__':
    p = argparse.ArgumentParser()
    p.add_argument('--subject-id', type=int, default=None)
    p.add_argument('--dry-run', action='store_true')
    args = p.parse_args()
    main(args.subject_id, args.dry_run)
