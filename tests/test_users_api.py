from __future__ import annotations

from collections.abc import Callable

from fastapi.testclient import TestClient

from itcrm import audit
from itcrm.directory.models import User
from tests.conftest import Directory


ClientWithActor = tuple[TestClient, Callable[[User], None]]


def _user_payload(**overrides: object) -> dict:
    payload = {
        "name": "Marko Manager",
        "email": "marko@itcrm.dev",
        "password": "secret123",
        "role": "sales_manager",
    }
    payload.update(overrides)
    return payload


def test_admin_lists_and_filters_users(client: ClientWithActor, directory: Directory) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    everyone = test_client.get("/api/admin/users").json()
    freelancers = test_client.get("/api/admin/users", params={"role": "freelance_consultant"}).json()
    inactive = test_client.get("/api/admin/users", params={"isActive": "false"}).json()
    sales = test_client.get("/api/admin/users", params={"q": "sales"}).json()

    assert everyone["total"] == 7
    assert freelancers["total"] == 4
    assert [item["id"] for item in inactive["items"]] == [directory.fc_inactive.id]
    assert {item["id"] for item in sales["items"]} == {directory.sm1.id, directory.sm2.id}
    assert "passwordHash" not in everyone["items"][0]


def test_user_management_requires_admin(client: ClientWithActor, directory: Directory) -> None:
    test_client, set_actor = client
    set_actor(directory.sm1)

    assert test_client.get("/api/admin/users").status_code == 403
    assert test_client.post("/api/admin/users", json=_user_payload()).status_code == 403


def test_created_sales_manager_manages_themself(client: ClientWithActor, directory: Directory) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    response = test_client.post("/api/admin/users", json=_user_payload())

    assert response.status_code == 201
    body = response.json()
    assert body["managerId"] == body["id"]
    assert body["isActive"] is True
    assert audit.audit_entries[-1]["entity_type"] == "directory.user"


def test_created_freelancer_needs_active_sales_manager(client: ClientWithActor, directory: Directory) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    ok = test_client.post(
        "/api/admin/users",
        json=_user_payload(email="fiona@itcrm.dev", role="freelance_consultant", managerId=directory.sm2.id),
    )
    no_manager = test_client.post(
        "/api/admin/users",
        json=_user_payload(email="fred@itcrm.dev", role="freelance_consultant"),
    )
    wrong_manager = test_client.post(
        "/api/admin/users",
        json=_user_payload(email="frank@itcrm.dev", role="freelance_consultant", managerId=directory.fc1.id),
    )

    assert ok.status_code == 201
    assert no_manager.status_code == 422
    assert wrong_manager.status_code == 422


def test_duplicate_email_conflicts(client: ClientWithActor, directory: Directory) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    response = test_client.post("/api/admin/users", json=_user_payload(email=directory.sm1.email.upper()))

    assert response.status_code == 409
    assert response.json()["code"] == "conflict"


def test_admin_deactivates_and_moves_freelancer(client: ClientWithActor, directory: Directory) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    deactivated = test_client.patch(f"/api/admin/users/{directory.fc2.id}", json={"isActive": False})
    moved = test_client.patch(f"/api/admin/users/{directory.fc2.id}", json={"managerId": directory.sm2.id})

    assert deactivated.status_code == 200
    assert deactivated.json()["isActive"] is False
    assert moved.status_code == 200


def test_promoting_freelancer_makes_them_self_managed(client: ClientWithActor, directory: Directory) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    response = test_client.patch(f"/api/admin/users/{directory.fc2.id}", json={"role": "sales_manager"})

    assert response.status_code == 200
    assert response.json()["role"] == "sales_manager"
    assert response.json()["managerId"] == directory.fc2.id


def test_sales_manager_with_active_reports_cannot_be_deactivated_or_demoted(
    client: ClientWithActor, directory: Directory
) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    deactivated = test_client.patch(f"/api/admin/users/{directory.sm1.id}", json={"isActive": False})
    promoted = test_client.patch(f"/api/admin/users/{directory.sm2.id}", json={"role": "admin"})

    assert deactivated.status_code == 409
    assert deactivated.json()["code"] == "manager_has_reports"
    assert deactivated.json()["details"] == {"userIds": [directory.fc1.id, directory.fc2.id]}
    assert promoted.status_code == 409
    assert promoted.json()["code"] == "manager_has_reports"


def test_sales_manager_can_be_deactivated_once_team_moves(client: ClientWithActor, directory: Directory) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    moved = test_client.patch(f"/api/admin/users/{directory.fc3.id}", json={"managerId": directory.sm1.id})
    deactivated = test_client.patch(f"/api/admin/users/{directory.sm2.id}", json={"isActive": False})

    assert moved.status_code == 200
    assert deactivated.status_code == 200
    assert deactivated.json()["isActive"] is False


def test_update_user_errors(client: ClientWithActor, directory: Directory) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    missing = test_client.patch("/api/admin/users/9999", json={"name": "Ghost"})
    taken = test_client.patch(f"/api/admin/users/{directory.fc1.id}", json={"email": directory.sm1.email})
    inactive_manager = test_client.patch(
        f"/api/admin/users/{directory.fc1.id}",
        json={"managerId": directory.fc_inactive.id},
    )

    assert missing.status_code == 404
    assert taken.status_code == 409
    assert inactive_manager.status_code == 422


def test_sales_manager_lists_active_team(client: ClientWithActor, directory: Directory) -> None:
    test_client, set_actor = client
    set_actor(directory.sm1)

    response = test_client.get("/api/users/team")

    assert response.status_code == 200
    assert {item["id"] for item in response.json()["items"]} == {directory.fc1.id, directory.fc2.id}

    set_actor(directory.fc1)
    assert test_client.get("/api/users/team").status_code == 403
