from datetime import datetime

from votereports.models import AuditLog


def test_healthz(client):
    assert client.get("/healthz").get_json() == {"status": "ok"}


def test_tally_endpoint_and_audit_row(client, president_race):
    with client.session_transaction() as sess:
        sess["user_id"] = 7
        sess["role"] = "admin"

    eid = president_race["election"].id
    resp = client.get(f"/api/elections/{eid}/tally")
    assert resp.status_code == 200
    body = resp.get_json()
    pos = body["positions"][str(president_race["position"].id)]
    assert [c["vote_percentage"] for c in pos["candidates"]] == [58.33, 25.0]
    assert pos["abstain_percentage"] == 16.67

    entry = AuditLog.query.one()
    assert entry.action == "report.tally"
    assert entry.user_id == 7
    assert entry.details == f"election_id={eid}"


def test_tally_not_found_is_404(client):
    resp = client.get("/api/elections/999999/tally")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "not_found"
    assert AuditLog.query.count() == 0


def test_bad_query_argument_is_400(client, president_race):
    eid = president_race["election"].id
    resp = client.get(f"/api/elections/{eid}/tally?position_id=abc")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_argument"

    resp = client.get(f"/api/elections/{eid}/timeline?range=forever")
    assert resp.status_code == 400


def test_close_race_margin_comes_from_settings(client, president_race):
    eid = president_race["election"].id
    pos_key = str(president_race["position"].id)

    body = client.get(f"/api/elections/{eid}/tally").get_json()
    assert body["positions"][pos_key]["candidates"][1]["is_close"] is True

    resp = client.post("/api/settings/reports", json={"close_race_margin": 2})
    assert resp.status_code == 200
    assert resp.get_json()["close_race_margin"] == 2

    body = client.get(f"/api/elections/{eid}/tally").get_json()
    assert body["positions"][pos_key]["candidates"][1]["is_close"] is False


def test_settings_rejects_non_json(client):
    resp = client.post("/api/settings/reports", data="nope", content_type="text/plain")
    assert resp.status_code == 400


def test_turnout_endpoint(client, build):
    election = build.election()
    science = build.program("Science")
    students = [build.student(science) for _ in range(4)]
    build.session(election, student=students[0])

    body = client.get(f"/api/elections/{election.id}/turnout").get_json()
    assert body["programs"][str(science.id)]["turnout_rate"] == 25.0
    assert body["participation_rate"] == 25.0


def test_timeline_endpoint_fills_hours(client, president_race):
    eid = president_race["election"].id
    body = client.get(f"/api/elections/{eid}/timeline").get_json()
    assert body["buckets"] == [{"date": "2026-03-10", "hour": 9, "count": 12}]
    assert len(body["hourly"]) == 24
    assert body["hourly"][9]["count"] == 12
    assert sum(h["count"] for h in body["hourly"]) == 12
    assert body["daily"] == [{
        "date": "2026-03-10",
        "sessions_count": 12,
        "voters_count": 12,
        "votes_count": 10,
        "avg_session_minutes": 3.0,
    }]
    assert body["peak_times"] == body["buckets"]


def test_summary_endpoint(client, president_race):
    body = client.get("/api/summary").get_json()
    assert body["election_id"] is None
    assert body["total_votes"] == 10

    eid = president_race["election"].id
    body = client.get(f"/api/summary?election_id={eid}").get_json()
    assert body["total_voters"] == 12
    assert AuditLog.query.filter_by(action="report.summary").count() == 2

    assert client.get("/api/summary?election_id=999999").status_code == 404


def test_unknown_route_is_json_404(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "not_found"


def test_timeline_peak_times_follow_settings(client, build):
    election = build.election()
    build.session(election, started_at=datetime(2026, 3, 10, 9, 0))
    build.session(election, started_at=datetime(2026, 3, 10, 9, 30))
    build.session(election, started_at=datetime(2026, 3, 10, 12, 0))
    client.post("/api/settings/reports", json={"peak_times_limit": 1})

    body = client.get(f"/api/elections/{election.id}/timeline").get_json()
    assert body["peak_times"] == [{"date": "2026-03-10", "hour": 9, "count": 2}]


def test_summary_endpoint_program_filter(client, build):
    election = build.election()
    science = build.program("Science")
    build.session(election, student=build.student(science))
    build.student(science)
    build.session(election, student=build.student(verified=False))

    body = client.get(f"/api/summary?election_id={election.id}&program_id={science.id}").get_json()
    assert body["total_voters"] == 1
    assert body["eligible_voters"] == 2
    assert body["participation_rate"] == 50.0

    entry = AuditLog.query.filter_by(action="report.summary").one()
    assert entry.details == f"election_id={election.id} program_id={science.id}"

    assert client.get(f"/api/summary?election_id={election.id}&program_id=4242").status_code == 404


def test_compare_endpoint(client, build, president_race):
    other = build.election("Club Elections")
    eid = president_race["election"].id

    resp = client.get(f"/api/compare?election_id={eid}&election_id={other.id}")
    assert resp.status_code == 200
    body = resp.get_json()
    assert [e["election_id"] for e in body["elections"]] == [eid, other.id]
    assert body["elections"][0]["positions"][0]["abstain_count"] == 2
    assert AuditLog.query.filter_by(action="report.compare").one().details == f"election_ids={eid},{other.id}"

    assert client.get("/api/compare").status_code == 400
    assert client.get("/api/compare?election_id=x").status_code == 400
    assert client.get(f"/api/compare?election_id={eid}&election_id=999999").status_code == 404
