"""
Remote Images 测试配置文件

pytest fixtures shared by the remote image tests.

关键概念：
- project_root：每个测试使用独立的临时项目目录
- image_server：用 httpx.MockTransport 模拟远程图片服务器，不访问真实网络
- make_config / make_fetcher：按需覆盖配置项
"""

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

# 添加 backend 目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from remote_images.config import FetchConfig
from remote_images.fetcher import HttpClient, ImageFetcher


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


# ============================================
# Fake image server
# ============================================


class BrokenStream(httpx.AsyncByteStream):
    """Yields some bytes, then drops the connection."""

    def __init__(self, first_chunk: bytes):
        self.first_chunk = first_chunk

    async def __aiter__(self):
        yield self.first_chunk
        raise httpx.ReadError("connection reset by peer")


class FakeImageServer:
    """
    Serves registered URLs and records every request.

    使用方式：
    ```python
    image_server.add("https://example.com/img", content_type="image/png")
    ```
    """

    def __init__(self):
        self.routes: Dict[str, dict] = {}
        self.requests: List[Tuple[str, str]] = []

    def add(
        self,
        url: str,
        body: bytes = PNG_BYTES,
        content_type: Optional[str] = "image/png",
        status: int = 200,
        broken: bool = False,
        delay: float = 0.0,
    ):
        self.routes[url] = {
            "body": body,
            "content_type": content_type,
            "status": status,
            "broken": broken,
            "delay": delay,
        }

    def calls(self, method: Optional[str] = None) -> List[str]:
        return [url for m, url in self.requests if method is None or m == method]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append((request.method, url))

        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404)

        if route["delay"]:
            await asyncio.sleep(route["delay"])

        headers = {}
        if route["content_type"]:
            headers["content-type"] = route["content_type"]

        if request.method == "HEAD":
            return httpx.Response(route["status"], headers=headers)

        if route["broken"]:
            return httpx.Response(route["status"], headers=headers, stream=BrokenStream(route["body"][:8]))

        return httpx.Response(route["status"], headers=headers, content=route["body"])


# ============================================
# Fixtures
# ============================================


@pytest.fixture
def project_root(tmp_path):
    """临时项目目录（包含 src/）"""
    (tmp_path / "src").mkdir()
    return tmp_path


@pytest.fixture
def image_server():
    return FakeImageServer()


@pytest.fixture
def http_client(image_server):
    """HttpClient backed by the fake image server."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(image_server.handler))
    return HttpClient(client=client)


@pytest.fixture
def make_config(project_root):
    """
    Build a FetchConfig rooted at the temporary project.

    使用方式：
    ```python
    config = make_config(original=True)
    ```
    """
    def _make(**overrides) -> FetchConfig:
        options = {
            "typeName": "Post",
            "sourceField": "image",
            "projectRoot": project_root,
        }
        options.update(overrides)
        return FetchConfig.from_options(options)

    return _make


@pytest.fixture
def make_fetcher(make_config, http_client):
    def _make(**overrides) -> ImageFetcher:
        return ImageFetcher(make_config(**overrides), http=http_client)

    return _make


# ============================================
# Helper Functions
# ============================================


def target_dir(project_root: Path) -> Path:
    return project_root / "src" / "assets" / "remoteImages"


def assert_no_network(image_server: FakeImageServer):
    """断言没有发出任何 HTTP 请求"""
    assert image_server.requests == [], f"Unexpected requests: {image_server.requests}"
