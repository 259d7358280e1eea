"""CLI script to write one user's JSON backup to a file.

Usage: python scripts/export_backup.py EMAIL [--out PATH]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `gradeflow` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from gradeflow.backups import export_to_file
from gradeflow.database import engine
from gradeflow.errors import NotFoundError


def main(email: str, out: str) -> int:
    with Session(engine) as session:
        try:
            metadata = export_to_file(session, email, out)
        except NotFoundError as e:
            print(e.message)
            return 1
    print(f"wrote {out}: {metadata['student_count']} students, "
          f"{metadata['subject_count']} subjects, {metadata['grade_count']} grades")
    return 0


if __name__ == '__main__':
    p = argparse.ArgumentParser()
    p.add_argument('email')
    p.add_argument('--out', default='gradeflow-backup.json')
    args = p.parse_args()
    sys.exit(main(args.email, args.out))
