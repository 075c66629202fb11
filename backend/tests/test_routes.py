"""
Remote Images API 测试

使用 FastAPI TestClient，HTTP 下载通过依赖覆盖替换为 FakeImageServer。
"""

import hashlib
import sys
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from remote_images import routes_fastapi
from remote_images.routes_fastapi import get_http_client, router


@pytest.fixture
def client(project_root, http_client, monkeypatch):
    monkeypatch.setattr(routes_fastapi, "PROJECT_ROOT", str(project_root))

    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_http_client] = lambda: http_client
    return TestClient(app)


def test_localize_records(client, image_server, project_root):
    image_server.add("https://example.com/a.png")

    response = client.post("/api/remote-images/localize", json={
        "type_name": "Post",
        "source_field": "cover",
        "records": [{"cover": "https://example.com/a.png"}, {"cover": "/static/b.png"}, {}],
    })

    assert response.status_code == 200
    body = response.json()
    digest = hashlib.sha256(b"https://example.com/a.png").hexdigest()
    assert body["success"] is True
    assert body["total_records"] == 3
    assert body["records"] == [
        {"cover": f"assets/remoteImages/{digest}.png"},
        {"cover": "/static/b.png"},
        {},
    ]
    assert body["stats"] == {"downloaded": 1, "unchanged": 1}
    assert (project_root / "src" / "assets" / "remoteImages" / f"{digest}.png").exists()


def test_project_root_cannot_be_overridden(client, image_server, project_root, tmp_path_factory):
    elsewhere = tmp_path_factory.mktemp("elsewhere")
    image_server.add("https://example.com/a.png")

    response = client.post("/api/remote-images/localize", json={
        "type_name": "Post",
        "source_field": "cover",
        "records": [{"cover": "https://example.com/a.png"}],
        "options": {"projectRoot": str(elsewhere), "project_root": str(elsewhere)},
    })

    assert response.status_code == 200
    assert list(elsewhere.iterdir()) == []
    assert any((project_root / "src" / "assets" / "remoteImages").iterdir())


def test_invalid_source_field(client):
    response = client.post("/api/remote-images/localize", json={
        "type_name": "Post",
        "source_field": "seo..images",
        "records": [],
    })

    assert response.status_code == 400
    assert "sourceField" in " ".join(response.json()["detail"])


def test_strict_leaf_types_returns_422(client):
    response = client.post("/api/remote-images/localize", json={
        "type_name": "Post",
        "source_field": "cover",
        "records": [{"cover": 12}],
        "options": {"strictLeafTypes": True},
    })

    assert response.status_code == 422


def test_health(client):
    response = client.get("/api/remote-images/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "remote-images"}
