from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient

from itcrm.core.config import get_settings
from itcrm.directory.models import User
from itcrm.middleware.rate_limit import reset_rate_limiter
from tests.conftest import CrmData, Directory


ClientWithActor = tuple[TestClient, Callable[[User], None]]


@pytest.fixture(autouse=True)
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


def test_mutating_endpoints_are_rate_limited(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    responses = [
        test_client.post("/api/client-categories", json={"name": f"Segment {index}"}) for index in range(5)
    ]

    assert [response.status_code for response in responses[:3]] == [201, 201, 201]
    limited = [response for response in responses if response.status_code == 429]
    assert limited

    first_limited = limited[0]
    body = first_limited.json()
    assert body["code"] == "rate_limited"
    assert body["message"] == "Too many requests"
    assert body["correlationId"] == first_limited.headers["x-correlation-id"]
    assert first_limited.headers.get("Retry-After") is not None


def test_buckets_are_separate_per_route_group(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.admin)

    for index in range(4):
        test_client.post("/api/client-categories", json={"name": f"Segment {index}"})

    response = test_client.patch(
        f"/api/admin/reassign/client-companies/{crm.company1.id}",
        json={"salesManagerId": directory.sm1.id, "freelanceConsultantId": directory.fc2.id},
    )

    assert response.status_code == 200


def test_get_endpoints_are_not_rate_limited(client: ClientWithActor, directory: Directory, crm: CrmData) -> None:
    test_client, set_actor = client
    set_actor(directory.fc1)

    responses = [test_client.get("/api/client-companies") for _ in range(10)]

    assert all(response.status_code == 200 for response in responses)
