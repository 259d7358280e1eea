import random
import threading

import pytest
from sqlmodel import Session

from gradeflow import models
from gradeflow.database import atomic, build_engine
from gradeflow.migrations import run_migrations
from gradeflow.ordering import SubjectSequence
from gradeflow.services import LessonService, MarkerService, SubjectService


@pytest.fixture
def subject_id(session, teacher):
    return SubjectService(session).create(teacher.id, {"name": "Mathematics"})["id"]


def names(session, subject_id):
    return [e.item.name for e in SubjectSequence(session, subject_id).entries()]


def test_insert_appends_and_shifts(session, teacher, subject_id):
    lessons = LessonService(session)
    for n in range(1, 4):
        lessons.create(teacher.id, subject_id, f"L{n}")
    lessons.create(teacher.id, subject_id, "First", order_index=1)
    lessons.create(teacher.id, subject_id, "Middle", order_index=3)
    assert names(session, subject_id) == ["First", "L1", "Middle", "L2", "L3"]
    assert SubjectSequence(session, subject_id).indices() == [1, 2, 3, 4, 5]


def test_insert_position_is_clamped(session, teacher, subject_id):
    lessons = LessonService(session)
    lessons.create(teacher.id, subject_id, "A")
    created = lessons.create(teacher.id, subject_id, "B", order_index=99)
    assert created["order_index"] == 2


def test_markers_share_the_lesson_sequence(session, teacher, subject_id):
    lessons = LessonService(session)
    markers = MarkerService(session)
    for n in range(1, 5):
        lessons.create(teacher.id, subject_id, f"L{n}")
    markers.create(teacher.id, subject_id, order_index=3)
    assert names(session, subject_id) == ["L1", "L2", "End of Grading Period 1", "L3", "L4"]
    assert SubjectSequence(session, subject_id).is_dense()


def test_delete_closes_the_gap(session, teacher, subject_id):
    lessons = LessonService(session)
    created = [lessons.create(teacher.id, subject_id, f"L{n}") for n in range(1, 5)]
    lessons.delete(teacher.id, created[1]["id"])
    assert names(session, subject_id) == ["L1", "L3", "L4"]
    assert SubjectSequence(session, subject_id).indices() == [1, 2, 3]


def test_move_marker_forward_and_back(session, teacher, subject_id):
    lessons = LessonService(session)
    markers = MarkerService(session)
    for n in range(1, 5):
        lessons.create(teacher.id, subject_id, f"L{n}")
    marker = markers.create(teacher.id, subject_id, name="P1", order_index=1)
    markers.update(teacher.id, marker.id, order_index=4)
    assert names(session, subject_id) == ["L1", "L2", "L3", "P1", "L4"]
    markers.update(teacher.id, marker.id, order_index=2)
    assert names(session, subject_id) == ["L1", "P1", "L2", "L3", "L4"]
    # beyond the end clamps to the last slot
    markers.update(teacher.id, marker.id, order_index=50)
    assert names(session, subject_id) == ["L1", "L2", "L3", "L4", "P1"]


def test_move_lesson(session, teacher, subject_id):
    lessons = LessonService(session)
    created = [lessons.create(teacher.id, subject_id, f"L{n}") for n in range(1, 5)]
    lessons.update(teacher.id, created[3]["id"], {"order_index": 1})
    assert names(session, subject_id) == ["L4", "L1", "L2", "L3"]


def test_delete_then_readd_restores_order(session, teacher, subject_id):
    lessons = LessonService(session)
    markers = MarkerService(session)
    for n in range(1, 6):
        lessons.create(teacher.id, subject_id, f"L{n}")
    markers.create(teacher.id, subject_id, name="P1", order_index=4)
    before = names(session, subject_id)

    entry = SubjectSequence(session, subject_id).entries()[1]
    removed_name = entry.item.name
    lessons.delete(teacher.id, entry.item.id)
    lessons.create(teacher.id, subject_id, removed_name, order_index=2)
    assert names(session, subject_id) == before


def test_bulk_create_appends_after_markers(session, teacher, subject_id):
    lessons = LessonService(session)
    markers = MarkerService(session)
    lessons.create(teacher.id, subject_id, "Intro")
    markers.create(teacher.id, subject_id)
    created = lessons.bulk_create(teacher.id, subject_id, 3, name_prefix="Week")
    assert [c["order_index"] for c in created] == [3, 4, 5]
    assert [c["name"] for c in created] == ["Week 2", "Week 3", "Week 4"]


def test_resequence_repairs_gaps_and_duplicates(session, teacher, subject_id):
    # write broken indices directly, as an older database might hold them
    for name, index in [("A", 1), ("B", 4), ("C", 4), ("D", 9)]:
        session.add(models.Lesson(subject_id=subject_id, name=name, order_index=index))
    session.add(models.GradingPeriodMarker(subject_id=subject_id, name="P", order_index=4))
    session.commit()
    sequence = SubjectSequence(session, subject_id)
    assert not sequence.is_dense()
    result = LessonService(session).resequence(teacher.id, subject_id)
    assert result["changed"] > 0
    assert [e["name"] for e in result["sequence"]] == ["A", "B", "C", "P", "D"]
    assert SubjectSequence(session, subject_id).is_dense()


def test_random_operations_keep_sequence_dense(session, teacher, subject_id):
    rng = random.Random(20240901)
    lessons = LessonService(session)
    markers = MarkerService(session)
    for step in range(80):
        entries = SubjectSequence(session, subject_id).entries()
        marker_count = sum(1 for e in entries if e.kind == "marker")
        op = rng.choice(["lesson", "marker", "delete", "move"]) if entries else "lesson"
        if op == "marker" and marker_count >= teacher.grading_periods - 1:
            op = "lesson"
        if op == "lesson":
            lessons.create(teacher.id, subject_id, f"L{step}", order_index=rng.randint(1, len(entries) + 1))
        elif op == "marker":
            markers.create(teacher.id, subject_id, order_index=rng.randint(1, len(entries) + 1))
        elif op == "delete":
            entry = rng.choice(entries)
            if entry.kind == "lesson":
                lessons.delete(teacher.id, entry.item.id)
            else:
                markers.delete(teacher.id, entry.item.id)
        else:
            entry = rng.choice(entries)
            target = rng.randint(1, len(entries))
            if entry.kind == "lesson":
                lessons.update(teacher.id, entry.item.id, {"order_index": target})
            else:
                markers.update(teacher.id, entry.item.id, order_index=target)
        assert SubjectSequence(session, subject_id).is_dense(), f"step {step} ({op}) broke the sequence"


def test_failed_insert_rolls_back_the_shift(session, teacher, subject_id, monkeypatch):
    lessons = LessonService(session)
    for n in range(1, 4):
        lessons.create(teacher.id, subject_id, f"L{n}")
    observed = []
    original_shift = SubjectSequence._shift

    def shift_then_fail(self, *args, **kwargs):
        original_shift(self, *args, **kwargs)
        observed.append(self.indices())
        raise RuntimeError("insert failed")

    monkeypatch.setattr(SubjectSequence, "_shift", shift_then_fail)
    with pytest.raises(RuntimeError):
        lessons.create(teacher.id, subject_id, "First", order_index=1)
    monkeypatch.undo()

    assert observed == [[2, 3, 4]]
    assert names(session, subject_id) == ["L1", "L2", "L3"]
    assert SubjectSequence(session, subject_id).indices() == [1, 2, 3]


def test_failed_move_rolls_back(session, teacher, subject_id, monkeypatch):
    lessons = LessonService(session)
    created = [lessons.create(teacher.id, subject_id, f"L{n}") for n in range(1, 5)]
    original_shift = SubjectSequence._shift

    def shift_then_fail(self, *args, **kwargs):
        original_shift(self, *args, **kwargs)
        raise RuntimeError("move failed")

    monkeypatch.setattr(SubjectSequence, "_shift", shift_then_fail)
    with pytest.raises(RuntimeError):
        lessons.update(teacher.id, created[3]["id"], {"order_index": 1, "name": "Renamed"})
    monkeypatch.undo()

    assert names(session, subject_id) == ["L1", "L2", "L3", "L4"]
    assert SubjectSequence(session, subject_id).is_dense()


def test_concurrent_inserts_take_turns(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'concurrent.db'}")
    run_migrations(engine)
    with Session(engine) as s:
        user = models.User(email="concurrent@example.com", password_hash="x", name="Concurrent")
        s.add(user)
        s.commit()
        subject = models.Subject(user_id=user.id, name="History")
        s.add(subject)
        s.commit()
        subject_id = subject.id

    first = Session(engine)
    # uncommitted insert: holds the subject until `first` commits
    SubjectSequence(first, subject_id).insert(models.Lesson(name="A"))
    finished = threading.Event()

    def second_insert():
        with Session(engine) as s:
            with atomic(s):
                SubjectSequence(s, subject_id).insert(models.Lesson(name="B"))
        finished.set()

    worker = threading.Thread(target=second_insert)
    worker.start()
    assert not finished.wait(0.3)
    first.commit()
    first.close()
    worker.join(timeout=5)
    assert finished.is_set()

    with Session(engine) as s:
        sequence = SubjectSequence(s, subject_id)
        assert [e.item.name for e in sequence.entries()] == ["A", "B"]
        assert sequence.indices() == [1, 2]
    engine.dispose()
