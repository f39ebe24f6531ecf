from __future__ import annotations

from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from itcrm import audit
from itcrm.directory.models import User
from tests.conftest import CrmData, Directory


ClientWithActor = tuple[TestClient, Callable[[User], None]]


def test_every_role_lists_categories_by_name(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)
    assert test_client.post("/api/client-categories", json={"name": "Agency"}).status_code == 201

    set_actor(directory.fc1)
    response = test_client.get("/api/client-categories")

    assert response.status_code == 200
    assert [item["name"] for item in response.json()] == ["Agency", "Enterprise"]


def test_admin_creates_and_renames_category(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    created = test_client.post("/api/client-categories", json={"name": "SMB", "description": "Small business"})
    assert created.status_code == 201
    category_id = created.json()["id"]

    renamed = test_client.patch(f"/api/client-categories/{category_id}", json={"name": "Small business"})

    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Small business"
    assert renamed.json()["description"] == "Small business"
    assert [entry["action"] for entry in audit.audit_entries if entry["entity_type"] == "crm.client_category"] == [
        "create",
        "update",
    ]


def test_duplicate_category_name_conflicts(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    duplicate = test_client.post("/api/client-categories", json={"name": "Enterprise"})
    other = test_client.post("/api/client-categories", json={"name": "Public sector"})
    rename = test_client.patch(f"/api/client-categories/{other.json()['id']}", json={"name": "Enterprise"})

    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "conflict"
    assert rename.status_code == 409


def test_conflict_at_commit_leaves_no_audit_entry(
    client: ClientWithActor,
    db_session: Session,
    directory: Directory,
    crm: CrmData,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    def lose_race() -> None:
        raise IntegrityError("INSERT INTO client_categories", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(db_session, "commit", lose_race)
    response = test_client.post("/api/client-categories", json={"name": "Raced"})

    assert response.status_code == 409
    assert response.json()["message"] == "Client category name already exists"
    assert [entry for entry in audit.audit_entries if entry["entity_type"] == "crm.client_category"] == []


def test_only_admin_manages_categories(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.sm1)

    created = test_client.post("/api/client-categories", json={"name": "Agency"})
    renamed = test_client.patch(f"/api/client-categories/{crm.category.id}", json={"name": "Agency"})

    assert created.status_code == 403
    assert renamed.status_code == 403


def test_rename_missing_category_is_not_found(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    response = test_client.patch("/api/client-categories/9999", json={"name": "Ghost"})

    assert response.status_code == 404
