"""
Endpoint tests for the Impress render service.
Rendering, caching and the upstream are patched out; no browser is launched.

Run tests:
    pytest tests/test_routes.py -v
"""
import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import make_png
from impress_service.renderer import PoolAcquireTimeout, RenderError, RenderTimeout
from impress_service.services import ProxiedAsset, UpstreamError

LIBRARY_URL = "https://images.neopets.com/cp/items/data/000/000/522/522_756e4b1d64/522.js"
ASSET_URL = "http://images.neopets.com/items/mall_bg_bubbles.gif"


@pytest.fixture
def client():
    """Create test client. The lifespan doesn't run, so no pool is started."""
    from impress_service.app.main import app
    return TestClient(app)


@pytest.fixture
def no_cache():
    with patch("impress_service.app.routes.cache_manager") as cache:
        cache.get.return_value = None
        yield cache


# ==================== HEALTH ====================

class TestHealthEndpoint:

    def test_health_returns_ok(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "asset_image" in data["features"]
        assert data["page_pool"]["started"] is False

    def test_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "renders_by_status" in response.json()


# ==================== ASSET IMAGE ====================

class TestAssetImageEndpoint:

    def test_renders_png(self, client, no_cache):
        png = make_png((300, 300))
        with patch("impress_service.app.routes.render_image", new=AsyncMock(return_value=png)) as render:
            response = client.get("/api/assetImage", params={"libraryUrl": LIBRARY_URL, "size": "300"})

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "public, max-age=31536000, immutable"
        assert response.content == png
        render.assert_awaited_once_with(LIBRARY_URL, "300")
        no_cache.set.assert_called_once()

    def test_cache_io_runs_off_the_event_loop(self, client, no_cache):
        loops = []

        def record_loop(*args):
            try:
                loops.append(asyncio.get_running_loop())
            except RuntimeError:
                loops.append(None)

        no_cache.get.side_effect = lambda key: record_loop() or None
        no_cache.set.side_effect = record_loop
        with patch("impress_service.app.routes.render_image", new=AsyncMock(return_value=make_png())):
            response = client.get("/api/assetImage", params={"libraryUrl": LIBRARY_URL, "size": "300"})

        assert response.status_code == 200
        assert loops == [None, None]

    def test_cache_hit_skips_render(self, client, no_cache):
        png = make_png()
        no_cache.get.return_value = png
        with patch("impress_service.app.routes.render_image", new=AsyncMock()) as render:
            response = client.get("/api/assetImage", params={"libraryUrl": LIBRARY_URL, "size": "600"})

        assert response.status_code == 200
        assert response.content == png
        render.assert_not_awaited()

    @pytest.mark.parametrize("params,message", [
        ({"size": "600"}, "libraryUrl is required"),
        (
            {"libraryUrl": "http://images.neopets.com/a.js", "size": "600"},
            "libraryUrl must be an HTTPS Neopets URL, but was: http://images.neopets.com/a.js",
        ),
        ({"libraryUrl": LIBRARY_URL, "size": "1000"}, "size must be 600, 300, or 150, but was: 1000"),
    ])
    def test_invalid_input(self, client, no_cache, params, message):
        with patch("impress_service.app.routes.render_image", new=AsyncMock()) as render:
            response = client.get("/api/assetImage", params=params)

        assert response.status_code == 400
        assert response.text == message
        assert response.headers["content-type"] == "text/plain; charset=utf8"
        render.assert_not_awaited()

    def test_busy_pool(self, client, no_cache):
        with patch("impress_service.app.routes.render_image", new=AsyncMock(side_effect=PoolAcquireTimeout())):
            response = client.get("/api/assetImage", params={"libraryUrl": LIBRARY_URL, "size": "150"})

        assert response.status_code == 503
        assert response.text == "Could not load image: Server under heavy load"
        no_cache.set.assert_not_called()

    def test_render_error(self, client, no_cache):
        error = RenderError("Movie failed")
        with patch("impress_service.app.routes.render_image", new=AsyncMock(side_effect=error)):
            response = client.get("/api/assetImage", params={"libraryUrl": LIBRARY_URL, "size": "150"})

        assert response.status_code == 500
        assert response.text == "Could not load image: Movie failed"
        no_cache.set.assert_not_called()

    def test_render_timeout(self, client, no_cache):
        error = RenderTimeout("Timed out waiting for the movie to load")
        with patch("impress_service.app.routes.render_image", new=AsyncMock(side_effect=error)):
            response = client.get("/api/assetImage", params={"libraryUrl": LIBRARY_URL, "size": "150"})

        assert response.status_code == 500
        assert response.text.startswith("Could not load image: ")


# ==================== ASSET PROXY ====================

class TestAssetProxyEndpoint:

    def test_rejects_before_network(self, client):
        with patch("impress_service.services.asset_proxy.httpx.AsyncClient") as http_client:
            response = client.get("/api/assetProxy", params={"url": "http://example.com/a.gif"})

        assert response.status_code == 400
        assert response.text == "Bad request: URL did not match any valid patterns"
        http_client.assert_not_called()

    def test_missing_url(self, client):
        response = client.get("/api/assetProxy")

        assert response.status_code == 400
        assert response.text == "Bad request: Must provide `?url` in the query string"

    def test_passes_upstream_through(self, client):
        asset = ProxiedAsset(
            status_code=200,
            body=b"GIF89a",
            headers={"Content-Type": "image/gif", "Cache-Control": "max-age=300", "ETag": '"x"'},
        )
        with patch("impress_service.app.routes.fetch_asset", new=AsyncMock(return_value=asset)) as fetch:
            response = client.get("/api/assetProxy", params={"url": ASSET_URL})

        assert response.status_code == 200
        assert response.content == b"GIF89a"
        assert response.headers["content-type"] == "image/gif"
        assert response.headers["cache-control"] == "max-age=300"
        assert response.headers["etag"] == '"x"'
        fetch.assert_awaited_once_with(ASSET_URL)

    def test_upstream_status_passes_through(self, client):
        asset = ProxiedAsset(status_code=404, body=b"Not Found")
        with patch("impress_service.app.routes.fetch_asset", new=AsyncMock(return_value=asset)):
            response = client.get("/api/assetProxy", params={"url": ASSET_URL})

        assert response.status_code == 404

    def test_unreachable_upstream(self, client):
        error = UpstreamError("Upstream request failed: refused")
        with patch("impress_service.app.routes.fetch_asset", new=AsyncMock(side_effect=error)):
            response = client.get("/api/assetProxy", params={"url": ASSET_URL})

        assert response.status_code == 502


# ==================== OUTFIT APPEARANCE ====================

class TestOutfitAppearanceEndpoint:

    def test_composes_visible_layers(self, client):
        payload = {
            "petAppearance": {
                "layers": [
                    {"id": "bg", "zone": {"id": "1", "depth": 0}, "imageUrl": "https://example.com/bg.png"},
                    {"id": "body", "zone": {"id": "2", "depth": 10}, "imageUrl": "https://example.com/body.png"},
                ],
            },
            "itemAppearances": [
                {
                    "layers": [{
                        "id": "hat", "zone": {"id": "3", "depth": 20},
                        "svgUrl": "http://images.neopets.com/cp/items/data/000/000/001/1_abc/1.svg",
                    }],
                    "restrictedZones": [],
                },
                {"layers": [], "restrictedZones": [{"id": "2"}]},
            ],
        }

        response = client.post("/api/outfitAppearance", json=payload)

        assert response.status_code == 200
        layers = response.json()["visibleLayers"]
        assert [l["id"] for l in layers] == ["bg", "hat"]
        assert layers[0]["bestImageUrl"] == "https://example.com/bg.png"
        assert layers[1]["bestImageUrl"].startswith("/api/assetProxy?url=http%3A%2F%2Fimages.neopets.com")

    def test_empty_outfit(self, client):
        response = client.post("/api/outfitAppearance", json={"petAppearance": None, "itemAppearances": []})

        assert response.status_code == 200
        assert response.json() == {"visibleLayers": []}

    def test_bad_layer(self, client):
        response = client.post(
            "/api/outfitAppearance",
            json={"petAppearance": {"layers": [{"id": "x"}]}, "itemAppearances": []},
        )

        assert response.status_code == 400

    def test_composes_from_asset_rows(self, client):
        swf = "http://images.neopets.com/cp/items/swf/000/000/001/1_abc.swf"
        payload = {
            "size": "300",
            "petAppearance": {
                "assets": [
                    {"id": 1, "remoteId": 101, "zoneId": 1, "depth": 0, "url": swf, "type": "biology"},
                    {"id": 2, "remoteId": 102, "zoneId": 2, "depth": 10, "url": swf, "type": "biology"},
                ],
            },
            "itemAppearances": [
                {
                    "assets": [{"id": 3, "remoteId": 7941, "zoneId": 3, "depth": 20, "url": swf}],
                    "zonesRestrict": "01",
                },
            ],
        }

        response = client.post("/api/outfitAppearance", json=payload)

        assert response.status_code == 200
        layers = response.json()["visibleLayers"]
        assert [l["id"] for l in layers] == ["1", "3"]
        assert layers[1]["bestImageUrl"] == (
            "https://impress-asset-images.s3.amazonaws.com/object/000/000/007/7941/300x300.png"
        )

    def test_http_image_urls_are_made_safe(self, client):
        payload = {
            "petAppearance": {
                "layers": [{"id": "bg", "zone": {"id": "1", "depth": 0},
                            "imageUrl": "http://images.neopets.com/items/bg.gif"}],
            },
        }

        response = client.post("/api/outfitAppearance", json=payload)

        assert response.json()["visibleLayers"][0]["bestImageUrl"] == (
            "https://images.neopets-asset-proxy.openneo.net/items/bg.gif"
        )

    @pytest.mark.parametrize("payload", [
        {"itemAppearances": [5]},
        {"petAppearance": "nope"},
        {"petAppearance": {"layers": ["x"]}},
        {"petAppearance": {"layers": [{"id": 1, "zone": 7, "depth": 1}]}},
        {"itemAppearances": [{"assets": [{"id": 1}], "zonesRestrict": "1"}]},
        {"itemAppearances": [{"assets": [5]}]},
        {"size": "1000", "itemAppearances": []},
    ])
    def test_malformed_bodies_are_rejected(self, client, payload):
        response = client.post("/api/outfitAppearance", json=payload)

        assert response.status_code == 400
