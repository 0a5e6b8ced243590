"""
Election results aggregation.

Every report here is a read-only set of aggregate queries over the voting
tables. Reports take plain ids and options, never the web session, and
either return a complete data-shaped result or raise a ReportError:

- NotFound when the election (or requested position / program) is missing
- InvalidArgument for malformed ids or options
- DataAccessError when the store fails; the SQLAlchemy error is chained
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import func, distinct, select
from sqlalchemy.exc import SQLAlchemyError

from .errors import NotFound, InvalidArgument, DataAccessError
from .models import (
    db, Election, Position, Candidate, VotingSession, Vote, AbstainVote,
    Student, Program,
)
from .utils.calc import (
    percent, compute_position_result, resolve_time_range, bucket_by_hour, top_buckets,
    daily_trend, session_timing,
)

logger = logging.getLogger(__name__)

COMPLETED = "completed"


@contextmanager
def _reading(report: str):
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Query failed while building %s report", report)
        raise DataAccessError(f"Could not read voting data for the {report} report.") from exc


def _as_id(value, name: str) -> int:
    if value is None or value == "":
        raise NotFound(f"No {name} given.")
    if isinstance(value, bool):
        raise InvalidArgument(f"{name} must be an integer.")
    if isinstance(value, float) and not value.is_integer():
        raise InvalidArgument(f"{name} must be an integer, got {value!r}.")
    try:
        iv = int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{name} must be an integer, got {value!r}.")
    if iv <= 0:
        raise NotFound(f"{name} {iv} does not exist.")
    return iv


def _get_election(election_id) -> Election:
    eid = _as_id(election_id, "election_id")
    election = db.session.get(Election, eid)
    if election is None:
        raise NotFound(f"Election {eid} not found.")
    return election


def _get_program(program_id) -> Program:
    pid = _as_id(program_id, "program_id")
    program = db.session.get(Program, pid)
    if program is None:
        raise NotFound(f"Program {pid} not found.")
    return program


def _eligible():
    return (Student.is_active.is_(True), Student.is_verified.is_(True))


def _completed_sessions(query, election_id: int | None, start=None, end=None, program_id: int | None = None):
    query = query.filter(VotingSession.status == COMPLETED)
    if election_id is not None:
        query = query.filter(VotingSession.election_id == election_id)
    if start is not None:
        query = query.filter(VotingSession.started_at >= start)
    if end is not None:
        query = query.filter(VotingSession.started_at < end)
    if program_id is not None:
        query = query.filter(
            VotingSession.student_id.in_(select(Student.id).where(Student.program_id == program_id))
        )
    return query


# -------------------------
# Tally
# -------------------------
def tally(election_id, position_id=None, close_margin: int = 5) -> Dict[str, Any]:
    """
    Per-position candidate results for an election.

    Only votes and abstains recorded in completed sessions count. Percentages
    are shares of votes + abstains for the position. Positions come in
    display order; candidates by votes desc, then registration order.
    """
    with _reading("tally"):
        election = _get_election(election_id)

        pq = Position.query.filter_by(election_id=election.id)
        if position_id is not None:
            pid = _as_id(position_id, "position_id")
            pq = pq.filter(Position.id == pid)
        positions = pq.order_by(Position.display_order, Position.id).all()
        if position_id is not None and not positions:
            raise NotFound(f"Position {position_id} not found in election {election.id}.")
        position_ids = [p.id for p in positions]

        candidates = (
            Candidate.query.filter(Candidate.position_id.in_(position_ids)).all()
            if position_ids else []
        )

        vote_counts = dict(
            _completed_sessions(
                db.session.query(Vote.candidate_id, func.count(Vote.id))
                .join(VotingSession, Vote.session_id == VotingSession.id)
                .join(Candidate, Vote.candidate_id == Candidate.id)
                .filter(Candidate.position_id.in_(position_ids)),
                election.id,
            )
            .group_by(Vote.candidate_id)
            .all()
        ) if position_ids else {}

        abstain_counts = dict(
            _completed_sessions(
                db.session.query(AbstainVote.position_id, func.count(AbstainVote.id))
                .join(VotingSession, AbstainVote.session_id == VotingSession.id)
                .filter(AbstainVote.position_id.in_(position_ids)),
                election.id,
            )
            .group_by(AbstainVote.position_id)
            .all()
        ) if position_ids else {}

    by_position: Dict[int, List[Dict[str, Any]]] = {pid: [] for pid in position_ids}
    for c in candidates:
        by_position[c.position_id].append({
            "candidate_id": c.id,
            "student_id": c.student_id,
            "vote_count": vote_counts.get(c.id, 0),
            "created_at": c.created_at,
        })

    results: Dict[int, Dict[str, Any]] = {}
    for p in positions:
        r = compute_position_result(by_position[p.id], abstain_counts.get(p.id, 0), close_margin=close_margin)
        results[p.id] = {
            "position_id": p.id,
            "title": p.title,
            "max_candidates": p.max_candidates,
            **r,
        }

    logger.info("Tally built for election %s (%d positions)", election.id, len(results))
    return {
        "election_id": election.id,
        "election_name": election.name,
        "status": election.status,
        "positions": results,
    }


# -------------------------
# Turnout
# -------------------------
def turnout(election_id, program_id=None) -> Dict[str, Any]:
    """Turnout per program plus the overall participation rate."""
    with _reading("turnout"):
        election = _get_election(election_id)

        if program_id is not None:
            programs = [_get_program(program_id)]
        else:
            programs = Program.query.all()

        totals = dict(
            db.session.query(Student.program_id, func.count(Student.id))
            .filter(*_eligible())
            .group_by(Student.program_id)
            .all()
        )
        voted = dict(
            _completed_sessions(
                db.session.query(Student.program_id, func.count(distinct(Student.id)))
                .join(VotingSession, VotingSession.student_id == Student.id)
                .filter(*_eligible()),
                election.id,
            )
            .group_by(Student.program_id)
            .all()
        )

        eligible_voters = (
            db.session.query(func.count(Student.id)).filter(*_eligible()).scalar() or 0
        )
        voted_students = (
            _completed_sessions(
                db.session.query(func.count(distinct(Student.id))).select_from(Student)
                .join(VotingSession, VotingSession.student_id == Student.id)
                .filter(*_eligible()),
                election.id,
            ).scalar() or 0
        )

    rows = []
    for p in programs:
        total = totals.get(p.id, 0)
        v = voted.get(p.id, 0)
        rows.append({
            "program_id": p.id,
            "program_name": p.name,
            "total_students": total,
            "voted_students": v,
            "turnout_rate": percent(v, total),
        })
    rows.sort(key=lambda r: (-r["turnout_rate"], r["program_name"] or "", r["program_id"]))

    return {
        "election_id": election.id,
        "programs": {r["program_id"]: r for r in rows},
        "eligible_voters": eligible_voters,
        "voted_students": voted_students,
        "participation_rate": percent(voted_students, eligible_voters),
    }


# -------------------------
# Timeline
# -------------------------
def timeline(election_id, time_range: str = "all", now: datetime | None = None) -> Dict[str, Any]:
    """
    Completed sessions per (date, hour) of started_at, plus a per-date trend
    with distinct voters, votes cast and average session length.

    The bucket list is sparse: hours without sessions are left out, callers
    wanting a continuous axis fill them in (see calc.hourly_axis).
    """
    start, end = resolve_time_range(time_range, now or datetime.utcnow())
    with _reading("timeline"):
        election = _get_election(election_id)
        rows = _completed_sessions(
            db.session.query(
                VotingSession.id, VotingSession.student_id,
                VotingSession.started_at, VotingSession.completed_at,
            ),
            election.id, start, end,
        ).all()
        votes_by_session = dict(
            _completed_sessions(
                db.session.query(Vote.session_id, func.count(Vote.id))
                .join(VotingSession, Vote.session_id == VotingSession.id),
                election.id, start, end,
            )
            .group_by(Vote.session_id)
            .all()
        )

    sessions = [
        {
            "student_id": student_id,
            "started_at": started_at,
            "completed_at": completed_at,
            "votes": votes_by_session.get(sid, 0),
        }
        for sid, student_id, started_at, completed_at in rows
    ]
    return {
        "election_id": election.id,
        "range": (time_range or "all").strip().lower(),
        "buckets": bucket_by_hour(s["started_at"] for s in sessions),
        "daily": daily_trend(sessions),
    }


def peak_times(election_id, limit: int = 10, time_range: str = "all", now: datetime | None = None) -> List[Dict[str, Any]]:
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise InvalidArgument("limit must be a positive integer")
    return top_buckets(timeline(election_id, time_range, now)["buckets"], limit)


# -------------------------
# Summary
# -------------------------
def summary(
    election_id=None,
    time_range: str = "all",
    now: datetime | None = None,
    program_id=None,
) -> Dict[str, Any]:
    """
    Counting statistics, system-wide or scoped to one election, optionally
    narrowed to the sessions and eligible students of one program.

    total_voters counts every student with a completed session; the
    participation rate only counts eligible ones, like turnout().
    """
    start, end = resolve_time_range(time_range, now or datetime.utcnow())
    with _reading("summary"):
        eid = None
        if election_id is not None:
            eid = _get_election(election_id).id
        prog_id = None
        if program_id is not None:
            prog_id = _get_program(program_id).id

        def scoped(query):
            return _completed_sessions(query, eid, start, end, prog_id)

        timings = scoped(db.session.query(VotingSession.started_at, VotingSession.completed_at)).all()
        total_voters = scoped(
            db.session.query(func.count(distinct(VotingSession.student_id)))
        ).scalar() or 0
        voted_eligible = scoped(
            db.session.query(func.count(distinct(VotingSession.student_id)))
            .select_from(VotingSession)
            .join(Student, VotingSession.student_id == Student.id)
            .filter(*_eligible())
        ).scalar() or 0
        total_votes = scoped(
            db.session.query(func.count(Vote.id)).select_from(Vote).join(VotingSession, Vote.session_id == VotingSession.id)
        ).scalar() or 0
        abstains = scoped(
            db.session.query(func.count(AbstainVote.id)).select_from(AbstainVote).join(VotingSession, AbstainVote.session_id == VotingSession.id)
        ).scalar() or 0

        pq = db.session.query(func.count(Position.id))
        cq = db.session.query(func.count(Candidate.id)).select_from(Candidate).join(Position, Candidate.position_id == Position.id)
        if eid is not None:
            pq = pq.filter(Position.election_id == eid)
            cq = cq.filter(Position.election_id == eid)
        total_positions = pq.scalar() or 0
        total_candidates = cq.scalar() or 0

        eq = db.session.query(func.count(Student.id)).filter(*_eligible())
        if prog_id is not None:
            eq = eq.filter(Student.program_id == prog_id)
        eligible_voters = eq.scalar() or 0

        by_status = None
        if eid is None:
            by_status = dict(
                db.session.query(Election.status, func.count(Election.id))
                .group_by(Election.status)
                .all()
            )

    sessions = len(timings)
    out = {
        "election_id": eid,
        "program_id": prog_id,
        "range": (time_range or "all").strip().lower(),
        "total_voters": total_voters,
        "total_votes": total_votes,
        "total_sessions": sessions,
        "total_positions": total_positions,
        "total_candidates": total_candidates,
        "eligible_voters": eligible_voters,
        "voted_eligible": voted_eligible,
        "abstains": abstains,
        "avg_votes_per_session": round(total_votes / sessions, 2) if sessions else 0.0,
        "participation_rate": percent(voted_eligible, eligible_voters),
        **session_timing(timings),
    }
    if by_status is not None:
        out["total_elections"] = sum(by_status.values())
        out["elections_by_status"] = by_status
    return out


# -------------------------
# Comparison
# -------------------------
def compare(election_ids, close_margin: int = 5) -> Dict[str, Any]:
    """
    Side-by-side figures for several elections: the summary, program
    turnout (programs with eligible students, by name) and per-position
    vote / abstain totals. Any unknown id fails the whole comparison.
    """
    ids: List[int] = []
    for raw in election_ids or []:
        eid = _as_id(raw, "election_id")
        if eid not in ids:
            ids.append(eid)
    if not ids:
        raise InvalidArgument("Select at least one election to compare.")

    out = []
    for eid in ids:
        results = tally(eid, close_margin=close_margin)
        programs = [p for p in turnout(eid)["programs"].values() if p["total_students"] > 0]
        programs.sort(key=lambda p: (p["program_name"] or "", p["program_id"]))
        out.append({
            "election_id": eid,
            "name": results["election_name"],
            "status": results["status"],
            "summary": summary(eid),
            "programs": programs,
            "positions": [
                {
                    "position_id": p["position_id"],
                    "title": p["title"],
                    "candidate_count": len(p["candidates"]),
                    "total_votes": p["total_votes"],
                    "abstain_count": p["abstain_count"],
                }
                for p in results["positions"].values()
            ],
        })
    return {"elections": out}
