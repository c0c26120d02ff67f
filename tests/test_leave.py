"""Tests for leave requests."""
from __future__ import annotations

from datetime import date, timedelta

from app.extensions import db
from app.models import LeaveRequest


def _leave_payload(**overrides):
    payload = {
        "leave_type": "vacation",
        "start_date": "2030-02-04",
        "end_date": "2030-02-06",
        "reason": "Family trip",
    }
    payload.update(overrides)
    return payload


def test_stylist_requests_own_leave(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    stylist = make_user("stylist", branch)

    response = client.post("/leave-requests", headers=auth_header(stylist), json=_leave_payload())
    data = response.get_json()["leave_request"]

    assert response.status_code == 201
    assert data["employee_id"] == stylist.user_id
    assert data["branch_id"] == branch.branch_id
    assert data["status"] == "pending"
    assert data["history"][0]["action"] == "created"


def test_leave_validation_errors(client, make_user, make_branch, auth_header) -> None:
    stylist = make_user("stylist", make_branch())

    response = client.post(
        "/leave-requests",
        headers=auth_header(stylist),
        json=_leave_payload(start_date="2030-02-10", end_date="2030-02-01", reason=""),
    )
    data = response.get_json()

    assert response.status_code == 400
    assert "Start date cannot be after end date" in data["errors"]
    assert "Reason for leave is required" in data["errors"]


def test_clients_cannot_request_leave(client, make_user, auth_header) -> None:
    response = client.post("/leave-requests", headers=auth_header(make_user()), json=_leave_payload())

    assert response.status_code == 403


def test_stylist_cannot_file_for_colleague(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    stylist, colleague = make_user("stylist", branch), make_user("stylist", branch)

    response = client.post(
        "/leave-requests",
        headers=auth_header(stylist),
        json=_leave_payload(employee_id=colleague.user_id),
    )

    assert response.status_code == 403


def test_approval_cancels_overlapping_pending(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    manager = make_user("branchManager", branch)
    stylist = make_user("stylist", branch)
    headers = auth_header(stylist)

    first = client.post("/leave-requests", headers=headers, json=_leave_payload()).get_json()["leave_request"]
    second = client.post(
        "/leave-requests", headers=headers, json=_leave_payload(start_date="2030-02-05", end_date="2030-02-08")
    ).get_json()["leave_request"]
    separate = client.post(
        "/leave-requests", headers=headers, json=_leave_payload(start_date="2030-03-01", end_date="2030-03-01")
    ).get_json()["leave_request"]

    response = client.put(f"/leave-requests/{first['id']}/approve", headers=auth_header(manager), json={})
    data = response.get_json()

    assert response.status_code == 200
    assert data["leave_request"]["status"] == "approved"
    assert data["leave_request"]["approved_by"] == manager.user_id
    assert data["cancelled_overlapping"] == 1
    assert db.session.get(LeaveRequest, second["id"]).status == "cancelled"
    assert db.session.get(LeaveRequest, separate["id"]).status == "pending"


def test_request_overlapping_approved_leave_conflicts(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    manager = make_user("branchManager", branch)
    stylist = make_user("stylist", branch)
    headers = auth_header(stylist)

    first = client.post("/leave-requests", headers=headers, json=_leave_payload()).get_json()["leave_request"]
    client.put(f"/leave-requests/{first['id']}/approve", headers=auth_header(manager), json={})

    response = client.post(
        "/leave-requests", headers=headers, json=_leave_payload(start_date="2030-02-06", end_date="2030-02-07")
    )

    assert response.status_code == 409
    assert response.get_json()["message"] == "Overlapping approved leave found: 2030-02-04 to 2030-02-06"


def test_manager_of_other_branch_cannot_approve(client, make_user, make_branch, auth_header) -> None:
    north, south = make_branch("North"), make_branch("South")
    stylist = make_user("stylist", north)
    outsider = make_user("branchManager", south)
    leave = client.post("/leave-requests", headers=auth_header(stylist), json=_leave_payload()).get_json()

    response = client.put(
        f"/leave-requests/{leave['leave_request']['id']}/approve", headers=auth_header(outsider), json={}
    )

    assert response.status_code == 403


def test_deny_requires_reason(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    manager = make_user("branchManager", branch)
    stylist = make_user("stylist", branch)
    leave_id = client.post("/leave-requests", headers=auth_header(stylist), json=_leave_payload()).get_json()[
        "leave_request"
    ]["id"]
    url = f"/leave-requests/{leave_id}/deny"

    assert client.put(url, headers=auth_header(manager), json={}).status_code == 400

    response = client.put(url, headers=auth_header(manager), json={"reason": "Peak season"})
    assert response.status_code == 200
    assert response.get_json()["leave_request"]["denied_reason"] == "Peak season"

    response = client.put(f"/leave-requests/{leave_id}/approve", headers=auth_header(manager), json={})
    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_transition"


def test_employee_cancels_own_leave_once(client, make_user, make_branch, auth_header) -> None:
    stylist = make_user("stylist", make_branch())
    headers = auth_header(stylist)
    leave_id = client.post("/leave-requests", headers=headers, json=_leave_payload()).get_json()["leave_request"]["id"]

    response = client.put(f"/leave-requests/{leave_id}/cancel", headers=headers, json={})
    assert response.status_code == 200
    assert response.get_json()["leave_request"]["status"] == "cancelled"

    response = client.put(f"/leave-requests/{leave_id}/cancel", headers=headers, json={})
    assert response.status_code == 400


def test_list_and_stats(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    manager = make_user("branchManager", branch)
    stylist = make_user("stylist", branch)
    headers = auth_header(stylist)
    client.post("/leave-requests", headers=headers, json=_leave_payload())
    client.post(
        "/leave-requests",
        headers=headers,
        json=_leave_payload(leave_type="sick", start_date="2030-03-01", end_date="2030-03-01"),
    )

    response = client.get("/leave-requests", headers=headers)
    assert len(response.get_json()["leave_requests"]) == 2

    response = client.get("/leave-requests?status=pending", headers=auth_header(manager))
    assert len(response.get_json()["leave_requests"]) == 2

    response = client.get("/leave-requests?status=approvedish", headers=auth_header(manager))
    assert response.status_code == 400

    response = client.get(f"/leave-requests/stats?branch_id={branch.branch_id}", headers=auth_header(manager))
    stats = response.get_json()["statistics"]
    assert stats["total"] == 2
    assert stats["by_type"] == {"vacation": 1, "sick": 1}
    assert stats["by_status"] == {"pending": 2}


def test_leave_rejects_non_integer_branch(client, make_user, make_branch, auth_header) -> None:
    stylist = make_user("stylist", make_branch())

    response = client.post("/leave-requests", headers=auth_header(stylist), json=_leave_payload(branch_id="abc"))

    assert response.status_code == 400
    assert "Branch ID must be an integer" in response.get_json()["errors"]
    assert db.session.query(LeaveRequest).count() == 0


def test_leave_must_use_employee_branch(client, make_user, make_branch, auth_header) -> None:
    north, south = make_branch("North"), make_branch("South")
    stylist = make_user("stylist", north)
    admin = make_user("systemAdmin")

    response = client.post(
        "/leave-requests", headers=auth_header(stylist), json=_leave_payload(branch_id=south.branch_id)
    )
    assert response.status_code == 400
    assert response.get_json()["message"] == "Leave must be filed against the employee's branch"

    response = client.post(
        "/leave-requests",
        headers=auth_header(admin),
        json=_leave_payload(employee_id=stylist.user_id, branch_id=south.branch_id),
    )
    assert response.status_code == 400
    assert db.session.query(LeaveRequest).count() == 0

    response = client.post(
        "/leave-requests", headers=auth_header(stylist), json=_leave_payload(branch_id=str(north.branch_id))
    )
    assert response.status_code == 201
    assert response.get_json()["leave_request"]["branch_id"] == north.branch_id


def test_leave_rejects_non_integer_employee(client, make_user, make_branch, auth_header) -> None:
    manager = make_user("branchManager", make_branch())

    response = client.post("/leave-requests", headers=auth_header(manager), json=_leave_payload(employee_id="abc"))

    assert response.status_code == 400


def test_cannot_cancel_approved_leave_once_started(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    stylist = make_user("stylist", branch)
    today = date.today()
    started = LeaveRequest(
        employee_id=stylist.user_id,
        branch_id=branch.branch_id,
        leave_type="sick",
        start_date=today,
        end_date=today + timedelta(days=2),
        reason="Flu",
        status="approved",
        history=[],
    )
    upcoming = LeaveRequest(
        employee_id=stylist.user_id,
        branch_id=branch.branch_id,
        leave_type="vacation",
        start_date=today + timedelta(days=30),
        end_date=today + timedelta(days=31),
        reason="Trip",
        status="approved",
        history=[],
    )
    db.session.add_all([started, upcoming])
    db.session.commit()
    headers = auth_header(stylist)

    response = client.put(f"/leave-requests/{started.leave_id}/cancel", headers=headers, json={})
    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_transition"
    assert db.session.get(LeaveRequest, started.leave_id).status == "approved"

    response = client.put(f"/leave-requests/{upcoming.leave_id}/cancel", headers=headers, json={})
    assert response.status_code == 200
    assert response.get_json()["leave_request"]["status"] == "cancelled"
