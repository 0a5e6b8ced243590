from __future__ import annotations
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Any, Iterable, Tuple

from ..errors import InvalidArgument

TIME_RANGES = ("all", "today", "yesterday", "week", "month")


def percent(part: int, whole: int) -> float:
    """round(part / whole * 100, 2), or 0.0 when whole is 0."""
    return round((part / whole) * 100, 2) if whole else 0.0


def compute_position_result(
    candidates: List[Dict[str, Any]],
    abstain_count: int,
    close_margin: int = 5,
) -> Dict[str, Any]:
    """
    Returns the tally of one position:
    - total_expressed / abstain_count / abstain_percentage
    - candidates: sorted by votes desc, then registration order, with
      vote_percentage, is_winner, margin, is_close
    - is_tie

    candidates: dicts with candidate_id, student_id, vote_count, created_at.
    Percentages use votes + abstains of the position as denominator.
    """
    total_votes = sum(int(c.get("vote_count") or 0) for c in candidates)
    total_expressed = total_votes + int(abstain_count or 0)

    ordered = sorted(
        candidates,
        key=lambda c: (
            -int(c.get("vote_count") or 0),
            c.get("created_at") or datetime.min,
            c["candidate_id"],
        ),
    )
    highest = int(ordered[0].get("vote_count") or 0) if ordered else 0

    out = []
    for c in ordered:
        v = int(c.get("vote_count") or 0)
        margin = highest - v if highest > 0 else 0
        out.append({
            "candidate_id": c["candidate_id"],
            "student_id": c.get("student_id"),
            "vote_count": v,
            "vote_percentage": percent(v, total_expressed),
            "is_winner": highest > 0 and v == highest,
            "margin": margin,
            "is_close": 0 < margin <= close_margin,
        })

    winners = sum(1 for c in out if c["is_winner"])
    return {
        "total_votes": total_votes,
        "abstain_count": int(abstain_count or 0),
        "abstain_percentage": percent(int(abstain_count or 0), total_expressed),
        "total_expressed": total_expressed,
        "is_tie": winners > 1,
        "candidates": out,
    }


def resolve_time_range(name: str | None, now: datetime) -> Tuple[datetime | None, datetime | None]:
    """Map a range name to a [start, end) window on started_at. 'all' is unbounded."""
    name = (name or "all").strip().lower()
    if name not in TIME_RANGES:
        raise InvalidArgument(f"Unknown time range '{name}' (expected one of {', '.join(TIME_RANGES)})")
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if name == "today":
        return midnight, midnight + timedelta(days=1)
    if name == "yesterday":
        return midnight - timedelta(days=1), midnight
    if name == "week":
        return now - timedelta(weeks=1), None
    if name == "month":
        return now - timedelta(days=30), None
    return None, None


def bucket_by_hour(started_ats: Iterable[datetime]) -> List[Dict[str, Any]]:
    """Sparse (date, hour, count) buckets ordered by date then hour."""
    counts = Counter((ts.date(), ts.hour) for ts in started_ats if ts is not None)
    return [
        {"date": d.isoformat(), "hour": h, "count": n}
        for (d, h), n in sorted(counts.items())
    ]


def hourly_axis(buckets: List[Dict[str, Any]]) -> List[Dict[str, int]]:
    # continuous 0-23 axis, all dates folded together
    per_hour = {h: 0 for h in range(24)}
    for b in buckets:
        per_hour[int(b["hour"])] += int(b["count"])
    return [{"hour": h, "count": per_hour[h]} for h in range(24)]


def _minutes(started_at: datetime | None, completed_at: datetime | None) -> float | None:
    if started_at is None or completed_at is None:
        return None
    return (completed_at - started_at).total_seconds() / 60


def _avg(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def session_timing(pairs: Iterable[Tuple[datetime | None, datetime | None]]) -> Dict[str, Any]:
    """
    First start / last completion over (started_at, completed_at) pairs,
    plus the average session length in minutes (0.0 without sessions).
    """
    pairs = list(pairs)
    starts = [s for s, _ in pairs if s is not None]
    ends = [e for _, e in pairs if e is not None]
    durations = [m for m in (_minutes(s, e) for s, e in pairs) if m is not None]
    return {
        "first_vote_time": min(starts).isoformat() if starts else None,
        "last_vote_time": max(ends).isoformat() if ends else None,
        "avg_session_minutes": _avg(durations),
    }


def daily_trend(sessions: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Per-date activity from session dicts (student_id, started_at,
    completed_at, votes), keyed on the date the session started.
    """
    per_day: Dict[str, Dict[str, Any]] = {}
    for s in sessions:
        if s.get("started_at") is None:
            continue
        day = per_day.setdefault(
            s["started_at"].date().isoformat(),
            {"sessions": 0, "voters": set(), "votes": 0, "minutes": []},
        )
        day["sessions"] += 1
        day["voters"].add(s.get("student_id"))
        day["votes"] += int(s.get("votes") or 0)
        m = _minutes(s["started_at"], s.get("completed_at"))
        if m is not None:
            day["minutes"].append(m)

    return [
        {
            "date": d,
            "sessions_count": v["sessions"],
            "voters_count": len(v["voters"]),
            "votes_count": v["votes"],
            "avg_session_minutes": _avg(v["minutes"]),
        }
        for d, v in sorted(per_day.items())
    ]


def top_buckets(buckets: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    if limit <= 0:
        raise InvalidArgument("limit must be a positive integer")
    ranked = sorted(buckets, key=lambda b: (-b["count"], b["date"], b["hour"]))
    return ranked[:limit]
