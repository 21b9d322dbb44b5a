"""Shorten and mapping management endpoint tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from shortlinks.dependencies import ServiceManager
from shortlinks.enums import ConnectionState
from shortlinks.main import create_app


@pytest.mark.asyncio
async def test_shorten_valid_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"original_url": "https://example.com/a/long/path"})
    assert response.status_code == 200
    data = response.json()
    assert data["original_url"] == "https://example.com/a/long/path"
    assert len(data["short_code"]) == 6
    assert data["short_url"] == f"https://short.test/{data['short_code']}"
    assert data["clicks"] == 0
    assert "created_at" in data
    assert "id" in data


@pytest.mark.asyncio
async def test_shorten_accepts_camel_case_field(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"originalUrl": "https://www.python.org"})
    assert response.status_code == 200
    assert response.json()["original_url"] == "https://www.python.org"


@pytest.mark.asyncio
async def test_shorten_same_url_twice(client: AsyncClient) -> None:
    first = await client.post("/api/shorten", json={"original_url": "https://www.github.com"})
    second = await client.post("/api/shorten", json={"original_url": "https://www.github.com"})
    assert first.json()["short_code"] == second.json()["short_code"]
    assert first.json()["id"] == second.json()["id"]


@pytest.mark.asyncio
async def test_shorten_multiple_urls(client: AsyncClient) -> None:
    urls = [
        "https://www.google.com",
        "https://www.github.com",
        "https://www.python.org",
    ]
    codes = set()
    for url in urls:
        response = await client.post("/api/shorten", json={"original_url": url})
        assert response.status_code == 200
        codes.add(response.json()["short_code"])
    assert len(codes) == 3


@pytest.mark.asyncio
async def test_shorten_invalid_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"original_url": "not a url"})
    assert response.status_code == 400
    assert response.json() == {
        "error": "Invalid URL. Please provide a valid URL.",
        "type": "invalid_input",
    }


@pytest.mark.asyncio
async def test_shorten_empty_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"original_url": ""})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_shorten_missing_field(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_shorten_while_store_disconnected(client: AsyncClient, connection) -> None:
    connection.state = ConnectionState.DISCONNECTED
    response = await client.post("/api/shorten", json={"original_url": "https://www.google.com"})
    assert response.status_code == 503
    assert response.json()["type"] == "store_unavailable"


@pytest.mark.asyncio
async def test_shorten_uses_request_host_without_base_url(settings_factory, connection, store) -> None:
    settings = settings_factory(BASE_URL=None)
    services = ServiceManager(settings, connection=connection, store=store)
    app = create_app(settings, services=services)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.post("/api/shorten", json={"original_url": "https://www.google.com"})

    assert response.status_code == 200
    data = response.json()
    assert data["short_url"] == f"http://test/{data['short_code']}"


@pytest.mark.asyncio
async def test_list_urls(client: AsyncClient) -> None:
    await client.post("/api/shorten", json={"original_url": "https://www.google.com"})
    await client.post("/api/shorten", json={"original_url": "https://www.github.com"})

    response = await client.get("/api/urls")
    assert response.status_code == 200
    assert {item["original_url"] for item in response.json()} == {
        "https://www.google.com",
        "https://www.github.com",
    }


@pytest.mark.asyncio
async def test_get_url_by_id(client: AsyncClient) -> None:
    created = (await client.post("/api/shorten", json={"original_url": "https://www.google.com"})).json()

    response = await client.get(f"/api/url/{created['id']}")
    assert response.status_code == 200
    assert response.json()["short_code"] == created["short_code"]


@pytest.mark.asyncio
async def test_update_url(client: AsyncClient) -> None:
    created = (await client.post("/api/shorten", json={"original_url": "https://www.google.com"})).json()

    response = await client.put(f"/api/url/{created['id']}", json={"original_url": "https://www.bing.com"})
    assert response.status_code == 200
    data = response.json()
    assert data["original_url"] == "https://www.bing.com"
    assert data["short_code"] == created["short_code"]

    redirect = await client.get(f"/{created['short_code']}")
    assert redirect.headers["location"] == "https://www.bing.com"


@pytest.mark.asyncio
async def test_update_with_invalid_url(client: AsyncClient) -> None:
    created = (await client.post("/api/shorten", json={"original_url": "https://www.google.com"})).json()

    response = await client.put(f"/api/url/{created['id']}", json={"original_url": "not a url"})
    assert response.status_code == 400

    unchanged = await client.get(f"/api/url/{created['id']}")
    assert unchanged.json()["original_url"] == "https://www.google.com"


@pytest.mark.asyncio
async def test_update_unknown_id(client: AsyncClient) -> None:
    response = await client.put("/api/url/999", json={"original_url": "https://www.bing.com"})
    assert response.status_code == 404
    assert response.json() == {"error": "URL not found", "type": "not_found"}


@pytest.mark.asyncio
async def test_delete_url(client: AsyncClient) -> None:
    created = (await client.post("/api/shorten", json={"original_url": "https://www.google.com"})).json()

    response = await client.delete(f"/api/url/{created['id']}")
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "URL deleted successfully"}

    gone = await client.get(f"/{created['short_code']}")
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_delete_unknown_id(client: AsyncClient) -> None:
    response = await client.delete("/api/url/12345")
    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["get", "delete"])
async def test_malformed_id(client: AsyncClient, method: str) -> None:
    response = await getattr(client, method)("/api/url/abc")
    assert response.status_code == 400
    assert response.json()["type"] == "invalid_input"
