from __future__ import annotations

from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from itcrm.crm.models import Contact
from itcrm.directory.models import User
from tests.conftest import CrmData, Directory


ClientWithActor = tuple[TestClient, Callable[[User], None]]


def _payload(client_company_id: int, sales_manager_id: int, freelance_consultant_id: int, **overrides: object) -> dict:
    payload = {
        "name": "Nina New",
        "email": "Nina@Acme.com",
        "phone": "+381 11 555",
        "position": "CTO",
        "clientCompanyId": client_company_id,
        "salesManagerId": sales_manager_id,
        "freelanceConsultantId": freelance_consultant_id,
    }
    payload.update(overrides)
    return payload


def _names(response_json: dict) -> list[str]:
    return [item["name"] for item in response_json["items"]]


def test_contacts_are_listed_per_scope(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client

    set_actor(directory.fc1)
    assert _names(test_client.get("/api/contacts").json()) == ["Ana Acme"]

    set_actor(directory.sm2)
    assert _names(test_client.get("/api/contacts").json()) == ["Gordon Globex"]

    set_actor(directory.admin)
    assert test_client.get("/api/contacts").json()["total"] == 2


def test_search_matches_name_or_email_within_scope(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client

    set_actor(directory.admin)
    assert _names(test_client.get("/api/contacts", params={"q": "globex.com"}).json()) == ["Gordon Globex"]
    assert _names(test_client.get("/api/contacts", params={"q": "ana"}).json()) == ["Ana Acme"]
    assert _names(
        test_client.get("/api/contacts", params={"clientCompanyId": crm.company2.id}).json()
    ) == ["Gordon Globex"]

    set_actor(directory.fc1)
    assert test_client.get("/api/contacts", params={"q": "gordon"}).json()["total"] == 0


def test_freelancer_creates_contact_on_assigned_company(
    client: ClientWithActor,
    directory: Directory,
    crm: CrmData,
) -> None:
    test_client, set_actor = client
    set_actor(directory.fc1)

    response = test_client.post("/api/contacts", json=_payload(crm.company1.id, directory.sm1.id, directory.fc1.id))

    assert response.status_code == 201
    body = response.json()
    assert body["email"] == "nina@acme.com"
    assert body["clientCompanyId"] == crm.company1.id
    assert body["freelanceConsultantId"] == directory.fc1.id


@pytest.mark.parametrize(
    "owners",
    [
        ("sm2", "fc3"),
        ("sm1", "fc1"),
        (9998, 9999),
    ],
)
def test_freelancer_cannot_create_contact_on_foreign_company(
    client: ClientWithActor,
    db_session: Session,
    directory: Directory,
    crm: CrmData,
    owners: tuple[str | int, str | int],
) -> None:
    sales_manager_id, freelance_consultant_id = (
        getattr(directory, owner).id if isinstance(owner, str) else owner for owner in owners
    )
    test_client, set_actor = client
    set_actor(directory.fc1)

    response = test_client.post(
        "/api/contacts",
        json=_payload(crm.company2.id, sales_manager_id, freelance_consultant_id),
    )

    assert response.status_code == 403
    assert response.json()["code"] == "contact_company_not_owned"
    assert db_session.query(Contact).count() == 2


def test_freelancer_must_keep_company_sales_manager(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.fc1)

    response = test_client.post("/api/contacts", json=_payload(crm.company1.id, directory.sm2.id, directory.fc1.id))

    assert response.status_code == 403
    assert response.json()["code"] == "contact_sales_manager_mismatch"


def test_sales_manager_creates_contact_for_team_member(
    client: ClientWithActor,
    directory: Directory,
    crm: CrmData,
) -> None:
    test_client, set_actor = client
    set_actor(directory.sm1)

    response = test_client.post("/api/contacts", json=_payload(crm.company1.id, directory.sm1.id, directory.fc2.id))

    assert response.status_code == 201
    assert response.json()["freelanceConsultantId"] == directory.fc2.id


def test_sales_manager_cannot_create_contact_on_foreign_company(
    client: ClientWithActor,
    directory: Directory,
    crm: CrmData,
) -> None:
    test_client, set_actor = client
    set_actor(directory.sm1)

    response = test_client.post("/api/contacts", json=_payload(crm.company2.id, directory.sm1.id, directory.fc1.id))

    assert response.status_code == 403
    assert response.json()["code"] == "contact_company_not_owned"


def test_contact_with_inactive_owner_is_rejected(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.sm1)

    response = test_client.post(
        "/api/contacts",
        json=_payload(crm.company1.id, directory.sm1.id, directory.fc_inactive.id),
    )

    assert response.status_code == 422


def test_contact_on_missing_company_is_not_found(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    response = test_client.post("/api/contacts", json=_payload(9999, directory.sm1.id, directory.fc1.id))

    assert response.status_code == 404


def test_invalid_email_is_rejected(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.fc1)

    response = test_client.post(
        "/api/contacts",
        json=_payload(crm.company1.id, directory.sm1.id, directory.fc1.id, email="not-an-email"),
    )

    assert response.status_code == 422
    assert response.json()["code"] == "validation_failed"


def test_get_contact_distinguishes_missing_from_forbidden(
    client: ClientWithActor,
    directory: Directory,
    crm: CrmData,
) -> None:
    test_client, set_actor = client
    set_actor(directory.fc1)

    assert test_client.get(f"/api/contacts/{crm.contact1.id}").status_code == 200
    assert test_client.get(f"/api/contacts/{crm.contact2.id}").status_code == 403
    assert test_client.get("/api/contacts/9999").status_code == 404


def test_freelancer_updates_own_contact(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.fc1)

    response = test_client.patch(f"/api/contacts/{crm.contact1.id}", json={"phone": "+381 64 000"})

    assert response.status_code == 200
    assert response.json()["phone"] == "+381 64 000"


def test_manager_cannot_modify_contact_only_visible_through_team(
    client: ClientWithActor,
    db_session: Session,
    directory: Directory,
    crm: CrmData,
) -> None:
    crm.contact2.freelance_consultant_id = directory.fc1.id
    db_session.commit()

    test_client, set_actor = client
    set_actor(directory.sm1)

    assert test_client.get(f"/api/contacts/{crm.contact2.id}").status_code == 200
    response = test_client.patch(f"/api/contacts/{crm.contact2.id}", json={"notes": "met at fair"})

    assert response.status_code == 403
    assert response.json()["code"] == "not_modifiable"


def test_freelancer_cannot_move_contact_to_foreign_company(
    client: ClientWithActor,
    directory: Directory,
    crm: CrmData,
) -> None:
    test_client, set_actor = client
    set_actor(directory.fc1)

    response = test_client.patch(f"/api/contacts/{crm.contact1.id}", json={"clientCompanyId": crm.company2.id})

    assert response.status_code == 403
    assert response.json()["code"] == "contact_company_not_owned"
