"""Tests for branch services and stylist schedules."""
from __future__ import annotations

from app.extensions import db
from app.models import Service, StylistSchedule


def test_list_services_is_public(client, make_branch, make_service) -> None:
    branch = make_branch()
    make_service(branch, "Haircut")
    retired = make_service(branch, "Perm")
    retired.is_active = False
    db.session.commit()

    response = client.get(f"/branches/{branch.branch_id}/services")

    assert response.status_code == 200
    assert [s["name"] for s in response.get_json()["services"]] == ["Haircut"]


def test_branch_manager_creates_service(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    manager = make_user("branchManager", branch)

    response = client.post(
        f"/branches/{branch.branch_id}/services",
        headers=auth_header(manager),
        json={"name": "Color", "price_cents": 120000, "duration_minutes": 90, "category": "color"},
    )

    assert response.status_code == 201
    assert response.get_json()["service"]["price"] == 1200.0
    assert db.session.query(Service).count() == 1


def test_create_service_validation(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    admin = make_user("systemAdmin")

    response = client.post(
        f"/branches/{branch.branch_id}/services",
        headers=auth_header(admin),
        json={"name": "Zero", "price_cents": 100, "duration_minutes": 0},
    )
    assert response.status_code == 400

    response = client.post(
        f"/branches/{branch.branch_id}/services",
        headers=auth_header(admin),
        json={"price_cents": 100, "duration_minutes": 30},
    )
    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_manager_of_other_branch_cannot_edit_service(client, make_user, make_branch, make_service, auth_header) -> None:
    north, south = make_branch("North"), make_branch("South")
    service = make_service(north)
    outsider = make_user("branchManager", south)

    response = client.put(f"/services/{service.service_id}", headers=auth_header(outsider), json={"price_cents": 1})

    assert response.status_code == 403


def test_delete_service_deactivates(client, make_user, make_branch, make_service, auth_header) -> None:
    branch = make_branch()
    service = make_service(branch)
    admin = make_user("systemAdmin")

    response = client.delete(f"/services/{service.service_id}", headers=auth_header(admin))

    assert response.status_code == 200
    assert db.session.get(Service, service.service_id).is_active is False


def test_upsert_schedule_day(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    manager = make_user("branchManager", branch)
    stylist = make_user("stylist", branch)
    url = f"/stylists/{stylist.user_id}/schedules"

    response = client.post(
        url, headers=auth_header(manager), json={"day_of_week": "Monday", "start_time": "09:00", "end_time": "15:00"}
    )
    assert response.status_code == 201
    assert response.get_json()["schedule"]["day_of_week"] == "monday"

    response = client.post(
        url, headers=auth_header(manager), json={"day_of_week": "monday", "start_time": "10:00", "end_time": "16:00"}
    )
    assert response.status_code == 200
    assert response.get_json()["schedule"]["start_time"] == "10:00"
    assert db.session.query(StylistSchedule).count() == 1


def test_schedule_rejects_inverted_times(client, make_user, make_branch, auth_header) -> None:
    branch = make_branch()
    admin = make_user("systemAdmin")
    stylist = make_user("stylist", branch)

    response = client.post(
        f"/stylists/{stylist.user_id}/schedules",
        headers=auth_header(admin),
        json={"day_of_week": "tuesday", "start_time": "17:00", "end_time": "09:00"},
    )

    assert response.status_code == 400


def test_replace_week_and_delete_day(client, make_user, make_branch, make_schedule, auth_header) -> None:
    branch = make_branch()
    admin = make_user("systemAdmin")
    stylist = make_user("stylist", branch)
    make_schedule(stylist, "sunday")
    url = f"/stylists/{stylist.user_id}/schedules"

    response = client.put(
        url,
        headers=auth_header(admin),
        json={
            "schedules": [
                {"day_of_week": "wednesday", "start_time": "09:00", "end_time": "17:00"},
                {"day_of_week": "monday", "start_time": "09:00", "end_time": "17:00"},
            ]
        },
    )
    assert response.status_code == 200
    assert [r["day_of_week"] for r in response.get_json()["schedules"]] == ["monday", "wednesday"]

    response = client.delete(f"{url}?day=monday", headers=auth_header(admin))
    assert response.get_json() == {"deleted": 1}

    response = client.get(url)
    assert [r["day_of_week"] for r in response.get_json()["schedules"]] == ["wednesday"]


def test_stylist_cannot_edit_own_schedule(client, make_user, make_branch, auth_header) -> None:
    stylist = make_user("stylist", make_branch())

    response = client.post(
        f"/stylists/{stylist.user_id}/schedules",
        headers=auth_header(stylist),
        json={"day_of_week": "monday", "start_time": "09:00", "end_time": "17:00"},
    )

    assert response.status_code == 403


def test_branch_schedules_listing(client, make_user, make_branch, make_schedule, auth_header) -> None:
    branch = make_branch()
    receptionist = make_user("receptionist", branch)
    stylist = make_user("stylist", branch, name="Bea")
    make_schedule(stylist, "tuesday")
    make_schedule(stylist, "monday")

    response = client.get(f"/branches/{branch.branch_id}/schedules", headers=auth_header(receptionist))

    assert response.status_code == 200
    assert [r["day_of_week"] for r in response.get_json()["schedules"]] == ["monday", "tuesday"]
