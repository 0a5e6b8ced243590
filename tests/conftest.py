from datetime import datetime, timedelta

import pytest

from votereports.app import create_app
from votereports.models import (
    db, Election, Position, Candidate, VotingSession, Vote, AbstainVote, Student, Program,
)
from votereports.utils import storage


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "DATA_DIR", tmp_path)
    app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite://"})
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


class Builder:
    """Small helpers to lay down voting rows for a test."""

    def __init__(self):
        self._n = 0
        self.clock = datetime(2026, 3, 2, 8, 0, 0)

    def program(self, name):
        p = Program(name=name)
        db.session.add(p)
        db.session.commit()
        return p

    def student(self, program=None, active=True, verified=True):
        self._n += 1
        s = Student(
            student_number=f"STU{self._n:04d}",
            first_name="Student",
            last_name=str(self._n),
            program_id=program.id if program else None,
            is_active=active,
            is_verified=verified,
        )
        db.session.add(s)
        db.session.commit()
        return s

    def election(self, name="Student Council", status="active"):
        e = Election(name=name, election_type="general", status=status)
        db.session.add(e)
        db.session.commit()
        return e

    def position(self, election, title, order=0):
        p = Position(election_id=election.id, title=title, max_candidates=5, display_order=order)
        db.session.add(p)
        db.session.commit()
        return p

    def candidate(self, position, student=None):
        self.clock += timedelta(minutes=1)
        c = Candidate(position_id=position.id, student_id=(student or self.student()).id, created_at=self.clock)
        db.session.add(c)
        db.session.commit()
        return c

    def session(self, election, student=None, status="completed", started_at=None):
        vs = VotingSession(
            student_id=(student or self.student()).id,
            election_id=election.id,
            status=status,
            started_at=started_at or datetime(2026, 3, 10, 9, 15),
            completed_at=(started_at or datetime(2026, 3, 10, 9, 15)) + timedelta(minutes=3) if status == "completed" else None,
        )
        db.session.add(vs)
        db.session.commit()
        return vs

    def vote(self, session, candidate):
        db.session.add(Vote(session_id=session.id, candidate_id=candidate.id))
        db.session.commit()

    def abstain(self, session, position):
        db.session.add(AbstainVote(session_id=session.id, position_id=position.id))
        db.session.commit()


@pytest.fixture
def build(app):
    return Builder()


@pytest.fixture
def president_race(build):
    """President: A 7 votes, B 3 votes, 2 abstains, all in completed sessions."""
    election = build.election()
    president = build.position(election, "President", order=1)
    a = build.candidate(president)
    b = build.candidate(president)
    for _ in range(7):
        build.vote(build.session(election), a)
    for _ in range(3):
        build.vote(build.session(election), b)
    for _ in range(2):
        build.abstain(build.session(election), president)
    return {"election": election, "position": president, "a": a, "b": b}
