from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ELECTION_STATUSES = ("draft", "active", "completed", "cancelled")
SESSION_STATUSES = ("in_progress", "completed")


class Program(db.Model):
    __tablename__ = "programs"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)

    students = db.relationship("Student", backref="program")


class Student(db.Model):
    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(db.Integer, db.ForeignKey("programs.id"), nullable=True)

    student_number = db.Column(db.String(40), unique=True)
    first_name = db.Column(db.String(80))
    last_name = db.Column(db.String(80))

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_verified = db.Column(db.Boolean, default=False, nullable=False)


class Election(db.Model):
    __tablename__ = "elections"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    election_type = db.Column(db.String(60))

    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)

    # draft / active / completed / cancelled, set by an admin action
    status = db.Column(db.String(20), default="draft", nullable=False)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    positions = db.relationship("Position", backref="election", cascade="all,delete")


class Position(db.Model):
    __tablename__ = "positions"

    id = db.Column(db.Integer, primary_key=True)
    election_id = db.Column(db.Integer, db.ForeignKey("elections.id"), nullable=False)

    title = db.Column(db.String(120), nullable=False)
    max_candidates = db.Column(db.Integer, default=1)
    display_order = db.Column(db.Integer, default=0)

    candidates = db.relationship("Candidate", backref="position", cascade="all,delete")


class Candidate(db.Model):
    __tablename__ = "candidates"
    __table_args__ = (
        db.UniqueConstraint("position_id", "student_id", name="uq_candidate_position_student"),
    )

    id = db.Column(db.Integer, primary_key=True)
    position_id = db.Column(db.Integer, db.ForeignKey("positions.id"), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    student = db.relationship("Student")


class VotingSession(db.Model):
    __tablename__ = "voting_sessions"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    election_id = db.Column(db.Integer, db.ForeignKey("elections.id"), nullable=False)

    status = db.Column(db.String(20), default="in_progress", nullable=False)
    started_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)


class Vote(db.Model):
    __tablename__ = "votes"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("voting_sessions.id"), nullable=False)
    candidate_id = db.Column(db.Integer, db.ForeignKey("candidates.id"), nullable=False)


class AbstainVote(db.Model):
    __tablename__ = "abstain_votes"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("voting_sessions.id"), nullable=False)
    position_id = db.Column(db.Integer, db.ForeignKey("positions.id"), nullable=False)


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True)
    action = db.Column(db.String(80), nullable=False)
    details = db.Column(db.Text)
    ip_address = db.Column(db.String(45))
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)
