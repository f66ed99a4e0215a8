import pytest
from datetime import date, timedelta
from fastapi.testclient import TestClient

from database import Database
from main import create_app
from portal import Portal

PASSWORD = "password123"


def build_app(db_path):
    portal = Portal(Database(db_path), email_domain="solent.ac.uk")
    portal.start(password=PASSWORD)
    return create_app(portal=portal)


def build_client(db_path):
    return TestClient(build_app(db_path))


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "portal.db")


@pytest.fixture
def client(db_path):
    return build_client(db_path)


def login(client, email):
    response = client.post("/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["token_type"] == "bearer"
    client.headers["Authorization"] = f"Bearer {data['access_token']}"
    return data["user"]


@pytest.fixture
def member_client(client):
    login(client, "jordan.smith@solent.ac.uk")
    return client


@pytest.fixture
def committee_client(client):
    login(client, "alex.chen@solent.ac.uk")
    return client


@pytest.fixture
def admin_client(client):
    login(client, "admin@solent.ac.uk")
    return client


def future_date(days=40):
    return (date.today() + timedelta(days=days)).isoformat()


def test_login_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["data"]["email_domain"] == "solent.ac.uk"


def test_login_success(client):
    user = login(client, "jordan.smith@solent.ac.uk")
    assert user["role"] == "member"
    assert user["is_committee"] is False
    assert client.get("/").json()["data"]["redirect"] == "/dashboard"


def test_login_wrong_domain(client):
    response = client.post("/login", json={"email": "jordan@gmail.com", "password": PASSWORD})
    assert response.status_code == 401
    assert "@solent.ac.uk" in response.json()["message"]


def test_login_wrong_password(client):
    response = client.post("/login", json={"email": "jordan.smith@solent.ac.uk", "password": "wrong"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials. Please try again."


def test_login_missing_fields(client):
    response = client.post("/login", json={})
    assert response.status_code == 422
    assert set(response.json()["data"]["errors"]) == {"email", "password"}


def test_pages_redirect_to_login_without_session(client):
    for path in ("/dashboard", "/events", "/posts", "/post/1", "/profile", "/admin", "/event/2/admin"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"] == "/"


def test_member_redirected_from_admin(member_client):
    response = member_client.get("/admin", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/dashboard"
    response = member_client.get("/event/2/admin", follow_redirects=False)
    assert response.headers["location"] == "/dashboard"


def test_committee_sees_admin(committee_client):
    response = committee_client.get("/admin")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["analytics"]["summary"]["total_events"] == 4
    assert data["analytics"]["event_status"] == {"open": 2, "almost_full": 1, "full": 1}


def test_admin_only_routes(client):
    login(client, "jordan.smith@solent.ac.uk")
    response = client.post("/admin/members/2/promote", follow_redirects=False)
    assert response.headers["location"] == "/dashboard"

    login(client, "alex.chen@solent.ac.uk")
    response = client.post("/admin/members/2/promote", follow_redirects=False)
    assert response.headers["location"] == "/admin"

    login(client, "admin@solent.ac.uk")
    response = client.post("/admin/members/2/promote")
    assert response.status_code == 200
    assert response.json()["data"]["role"] == "committee"


def test_register_then_waitlist_then_cancel(client):
    login(client, "morgan.lee@solent.ac.uk")
    response = client.post("/events/4/register")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "registered"
    assert data["event"]["status"] == "full"

    login(client, "jordan.smith@solent.ac.uk")
    response = client.post("/events/4/register")
    data = response.json()["data"]
    assert data["status"] == "waitlisted"
    assert data["position"] == 1
    assert response.json()["message"].endswith("Position #1")

    events = {e["id"]: e for e in client.get("/events").json()["data"]}
    assert events[4]["my_status"] == "waitlisted"
    assert events[2]["my_position"] == 2

    response = client.post("/events/4/cancel")
    assert response.status_code == 200
    assert response.json()["data"]["event"]["waitlist"] == 0


def test_cancel_without_registration(member_client):
    response = member_client.post("/events/1/cancel")
    assert response.status_code == 409


def test_register_unknown_event(member_client):
    response = member_client.post("/events/99/register")
    assert response.status_code == 404
    assert response.json()["message"] == "Event 99 not found"


def test_cancel_promotes_from_waitlist(client):
    login(client, "riley.davis@solent.ac.uk")
    response = client.post("/events/2/cancel")
    assert response.json()["data"]["promoted_user_id"] == 5

    login(client, "alex.chen@solent.ac.uk")
    subjects = [(m["to"], m["subject"]) for m in client.get("/admin/emails").json()["data"]]
    assert ("morgan.lee@solent.ac.uk", "Spot Available: Weekend Hackathon") in subjects
    assert ("riley.davis@solent.ac.uk", "Registration Cancelled: Weekend Hackathon") in subjects


def test_event_admin_page(committee_client):
    data = committee_client.get("/event/2/admin").json()["data"]
    assert data["event"]["status"] == "full"
    assert data["counts"] == {"registered": 6, "waitlisted": 2, "attended": 0, "cancelled": 0}

    data = committee_client.get("/event/2/admin", params={"status": "waitlisted"}).json()["data"]
    assert [(a["name"], a["position"]) for a in data["attendees"]] == [("Morgan Lee", 1), ("Jordan Smith", 2)]

    data = committee_client.get("/event/2/admin", params={"search": "s123463"}).json()["data"]
    assert [a["name"] for a in data["attendees"]] == ["Riley Davis"]


def test_admin_promotion_requires_override_when_full(committee_client):
    response = committee_client.post("/event/2/admin/promote/6")
    assert response.status_code == 409

    response = committee_client.post("/event/2/admin/promote/6", params={"override_capacity": True})
    assert response.status_code == 200
    assert response.json()["data"]["registered"] == 7

    response = committee_client.post("/event/2/admin/promote/6")
    assert response.status_code == 409


def test_remove_attendee_and_mark_attended(committee_client):
    response = committee_client.delete("/event/2/admin/attendees/1")
    assert response.json()["data"]["promoted_user_id"] == 5

    response = committee_client.post("/event/2/admin/attended/5")
    assert response.status_code == 200
    counts = committee_client.get("/event/2/admin").json()["data"]["counts"]
    assert counts == {"registered": 5, "waitlisted": 1, "attended": 1, "cancelled": 1}

    response = committee_client.post("/event/2/admin/attended/6")
    assert response.status_code == 409


def test_send_reminders(committee_client):
    response = committee_client.post("/event/1/admin/remind", json={"user_ids": [1, 5]})
    assert response.json()["data"]["sent"] == 1
    response = committee_client.post("/event/1/admin/remind", json={})
    assert response.json()["data"]["sent"] == 3


def test_export_attendees_csv(committee_client):
    response = committee_client.get("/event/2/admin/export")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "Weekend_Hackathon_attendees_" in response.headers["content-disposition"]
    lines = response.text.splitlines()
    assert lines[0].startswith('"Name","Email"')
    assert len(lines) == 9

    response = committee_client.get("/event/2/admin/export", params={"ids": [5, 6], "format": "json"})
    assert len(response.json()["attendees"]) == 2


def test_export_empty_event_is_header_only(committee_client):
    created = committee_client.post("/admin/events", json={
        "title": "Quiet Talk",
        "description": "Nobody has signed up yet",
        "date": future_date(),
        "location": "Room 9",
        "capacity": 10,
    })
    assert created.status_code == 201
    event_id = created.json()["data"]["id"]
    response = committee_client.get(f"/event/{event_id}/admin/export")
    assert response.text == '"Name","Email","University ID","Registration Date","Status","Waitlist Position"\n'


def test_create_event_validation(committee_client):
    response = committee_client.post("/admin/events", json={
        "title": " ",
        "description": "Something",
        "date": future_date(),
        "location": "",
        "capacity": 0,
    })
    assert response.status_code == 422
    assert set(response.json()["data"]["errors"]) == {"title", "location", "capacity"}

    response = committee_client.post("/admin/events", json={
        "title": "Talk",
        "description": "  ",
        "date": future_date(),
        "location": "Room 9",
    })
    assert response.json()["data"]["errors"]["description"] == "Description is required"

    response = committee_client.post("/admin/events", json={
        "title": "Talk",
        "description": "Something",
        "date": "2001-01-01",
        "location": "Room 9",
    })
    assert response.json()["data"]["errors"]["date"] == "Date must be in the future"


def test_update_and_delete_event(committee_client):
    response = committee_client.put("/admin/events/2", json={"capacity": 7})
    assert response.status_code == 200
    assert response.json()["data"]["registered"] == 7
    assert response.json()["data"]["waitlist"] == 1

    response = committee_client.put("/admin/events/2", json={"capacity": 3})
    assert response.status_code == 422

    response = committee_client.delete("/admin/events/2")
    assert response.status_code == 200
    assert committee_client.get("/event/2/admin").status_code == 404


def test_posts_feed_and_detail(member_client):
    data = member_client.get("/posts", params={"category": "opportunity"}).json()["data"]
    assert [p["id"] for p in data["posts"]] == [3, 5]
    assert data["categories"]["all"] == 5

    data = member_client.get("/post/1").json()["data"]
    assert data["post"]["comment_count"] == 3
    assert len(data["comments"]) == 3

    response = member_client.post("/post/1/comments", json={"content": "See you there"})
    assert response.status_code == 201
    response = member_client.post("/post/1/comments", json={"content": "  "})
    assert response.status_code == 422

    response = member_client.post("/post/1/like")
    assert response.json()["data"]["like_count"] == 25
    assert member_client.get("/post/42").status_code == 404


def test_create_post(committee_client):
    response = committee_client.post("/admin/posts", json={
        "title": "Short",
        "content": "Too short",
    })
    assert response.status_code == 422
    assert "content" in response.json()["data"]["errors"]

    response = committee_client.post("/admin/posts", json={
        "title": "Later",
        "content": "This one goes out next week, stay tuned.",
        "schedule_for_later": True,
    })
    assert response.json()["data"]["errors"] == {"scheduled_date": "Scheduled date is required"}

    response = committee_client.post("/admin/posts", json={
        "title": "Later",
        "content": "This one goes out next week, stay tuned.",
        "category": "reminder",
        "schedule_for_later": True,
        "scheduled_date": future_date(7),
    })
    assert response.status_code == 201
    assert response.json()["data"]["scheduled_for"].endswith("12:00:00")
    assert response.json()["data"]["author_name"] == "Alex Chen"


def test_export_reports(committee_client):
    response = committee_client.get("/admin/export", params={"format": "json", "report_type": "summary"})
    assert response.status_code == 200
    assert response.json()["total_members"] == 9

    response = committee_client.get("/admin/export", params={"report_type": "detailed"})
    assert response.text.startswith("EVENTS DATA")

    response = committee_client.get("/admin/export", params={"format": "pdf"})
    assert response.status_code == 422


def test_dashboard_and_profile(member_client):
    data = member_client.get("/dashboard").json()["data"]
    assert [e["title"] for e in data["upcoming_events"]] == [
        "Web Dev Workshop: React Basics", "Git & GitHub Crash Course", "Weekend Hackathon",
    ]
    assert data["next_event"]["id"] == 1
    assert data["my_registrations"] == 1

    data = member_client.get("/profile").json()["data"]
    assert data["user"]["name"] == "Jordan Smith"
    assert data["registrations"][0]["my_status"] == "waitlisted"
    assert data["stats"]["events_attended"] == 4


def test_session_survives_restart(db_path):
    client = build_client(db_path)
    login(client, "alex.chen@solent.ac.uk")

    restarted = build_client(db_path)
    restarted.headers["Authorization"] = client.headers["Authorization"]
    assert restarted.get("/admin").status_code == 200

    restarted.post("/logout")
    again = build_client(db_path)
    again.headers["Authorization"] = client.headers["Authorization"]
    response = again.get("/dashboard", follow_redirects=False)
    assert response.headers["location"] == "/"


def test_sessions_are_isolated_between_clients(db_path):
    app = build_app(db_path)
    admin = TestClient(app)
    visitor = TestClient(app)
    login(admin, "admin@solent.ac.uk")

    response = visitor.get("/admin", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/"
    assert "admin@solent.ac.uk" not in response.text
    assert visitor.get("/").json()["data"]["email_domain"] == "solent.ac.uk"

    login(visitor, "jordan.smith@solent.ac.uk")
    response = visitor.get("/admin", follow_redirects=False)
    assert response.headers["location"] == "/dashboard"
    assert admin.get("/admin").status_code == 200

    visitor.post("/logout")
    assert visitor.get("/dashboard", follow_redirects=False).headers["location"] == "/"
    assert admin.get("/profile").json()["data"]["user"]["role"] == "admin"


def test_invalid_bearer_token_redirects_to_login(client):
    client.headers["Authorization"] = "Bearer not-a-token"
    response = client.get("/dashboard", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/"


def test_create_event_with_utc_offset_time(committee_client):
    response = committee_client.post("/admin/events", json={
        "title": "Offset Talk",
        "description": "Start time given with an offset",
        "date": future_date(),
        "time": "18:00+01:00",
        "location": "Room 12",
        "capacity": 10,
    })
    assert response.status_code == 201
    event_id = response.json()["data"]["id"]
    assert committee_client.get(f"/event/{event_id}/admin").status_code == 200

    response = committee_client.post("/admin/events", json={
        "title": "Offset Talk",
        "description": "Start time given with an offset",
        "date": "2001-01-01",
        "time": "18:00+01:00",
        "location": "Room 12",
    })
    assert response.status_code == 422
    assert response.json()["data"]["errors"]["date"] == "Date must be in the future"
