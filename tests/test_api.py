"""
Tests for the HTTP API with injected fake collaborators.
"""

import io
from dataclasses import replace
from zipfile import ZipFile

import pytest
from fastapi.testclient import TestClient

from arena_taste import export_pack

from arena_taste.api.app import (
    app,
    get_arena_client,
    get_config,
    get_session,
    get_store,
    get_vision_model,
)
from arena_taste.arena_client import ArenaAPIError
from arena_taste.config import AppConfig
from arena_taste.models import ArenaBlock, ArenaChannel
from arena_taste.triage import TriageSession
from arena_taste.vision import ImageData, VisionModel

from .fakes import FakeArenaClient, FakeChatClient

IMAGE = "data:image/png;base64,AAAA"


@pytest.fixture
def arena():
    return FakeArenaClient(
        [
            ArenaChannel(1, "Code", "code-abc"),
            ArenaChannel(2, "Classifier - Skipped", "classifier-skipped"),
            ArenaChannel(3, "Moodboard", "moodboard-1"),
        ]
    )


@pytest.fixture
def chat():
    return FakeChatClient([])


@pytest.fixture
def session():
    return TriageSession()


@pytest.fixture
def client(app_config, store, arena, chat, session):
    model = VisionModel(app_config.model, client=chat)
    app.dependency_overrides[get_config] = lambda: app_config
    app.dependency_overrides[get_arena_client] = lambda: arena
    app.dependency_overrides[get_vision_model] = lambda: model
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    """Test service status endpoints."""

    def test_health(self, client):
        """Configured credentials report healthy."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_credentials_is_503(self):
        """Without a token the Are.na routes are unavailable."""
        app.dependency_overrides[get_config] = lambda: AppConfig()
        try:
            response = TestClient(app).post("/api/skip", json={"blockId": 1})
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 503


class TestMatch:
    """Test reference matching."""

    def test_single_image(self, client, chat, store, sample_index):
        """Tags from the image rank the stored index."""
        store.save_index(sample_index)
        chat.replies.append('{"component": ["hero"], "vibe": ["bold"], "one_liner": "Hero"}')
        response = client.post("/api/match", json={"image": IMAGE})
        assert response.status_code == 200
        data = response.json()
        assert data["totalIndexed"] == 3
        assert data["oneLiner"] == "Hero"
        assert data["extractedTags"]["component"] == ["hero"]
        assert [m["block"]["id"] for m in data["matches"]] == [1]
        assert data["matches"][0]["score"] == 4
        assert data["matches"][0]["matchedTags"]["vibe"] == ["bold"]

    def test_several_images(self, client, chat, store, sample_index):
        """Per-image results are merged by best score."""
        store.save_index(sample_index)
        chat.replies.extend(
            [
                '{"component": ["hero"], "vibe": ["bold"]}',
                '{"component": ["pricing"], "style": ["minimal"]}',
            ]
        )
        response = client.post("/api/match", json={"images": [IMAGE, IMAGE]})
        assert response.status_code == 200
        assert [m["block"]["id"] for m in response.json()["matches"]] == [2, 1]

    def test_no_image(self, client):
        """A request without images is rejected."""
        assert client.post("/api/match", json={}).status_code == 400

    def test_bad_image(self, client, store, sample_index):
        """Non data-URL images are rejected."""
        store.save_index(sample_index)
        response = client.post("/api/match", json={"image": "https://x/y.png"})
        assert response.status_code == 400

    def test_missing_index(self, client):
        """Matching an unindexed channel is a 404."""
        response = client.post("/api/match", json={"image": IMAGE})
        assert response.status_code == 404

    def test_unparseable_reply(self, client, chat, store, sample_index):
        """A reply without JSON is a bad gateway."""
        store.save_index(sample_index)
        chat.replies.append("Sorry, I can't help with that")
        response = client.post("/api/match", json={"image": IMAGE})
        assert response.status_code == 502



class TestExportPack:
    """Test zipping matched references."""

    @pytest.fixture(autouse=True)
    def offline_images(self, monkeypatch):
        monkeypatch.setattr(export_pack, "download_image", lambda url: ImageData("AAAA", "image/png"))

    def test_zip_with_spec(self, client, chat, store, sample_index):
        """The pack holds the images and a spec with the high-confidence rules."""
        sample_index.blocks[0] = replace(sample_index.blocks[0], image_url="https://img/1.png")
        store.save_index(sample_index)
        store.save_anti_patterns(
            "refs",
            "### ❌ Gradient buttons\n**Confidence:** high\n\n### ❌ Serif text\n**Confidence:** medium\n",
        )
        chat.replies.append('{"specific_values": ["radius ~16px"], "borrow_this": "Flat cards"}')
        response = client.post(
            "/api/export-pack",
            json={"blockIds": [1, 2], "extractedTags": {"component": ["hero"]}},
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert response.headers["x-reference-count"] == "1"
        with ZipFile(io.BytesIO(response.content)) as archive:
            assert archive.namelist() == ["ref-1-bold-hero.png", "design-spec.md"]
            spec = archive.read("design-spec.md").decode("utf-8")
        assert "- radius ~16px" in spec
        assert "**Avoid:** Gradient buttons" in spec
        assert "Serif text" not in spec

    def test_without_analysis(self, client, chat, store, sample_index):
        """analyze=false makes no model calls."""
        store.save_index(sample_index)
        response = client.post("/api/export-pack", json={"blockIds": [3], "analyze": False})
        assert response.status_code == 200
        assert chat.calls == []

    def test_no_matches(self, client):
        """An empty id list is rejected."""
        assert client.post("/api/export-pack", json={"blockIds": []}).status_code == 400

    def test_missing_index(self, client):
        """Exporting from an unindexed channel is a 404."""
        assert client.post("/api/export-pack", json={"blockIds": [1]}).status_code == 404

    def test_unknown_blocks(self, client, store, sample_index):
        """Ids that are not in the index are a 404."""
        store.save_index(sample_index)
        assert client.post("/api/export-pack", json={"blockIds": [42]}).status_code == 404


class TestClassify:
    """Test manual classification routes."""

    def test_managed_channel(self, client, arena):
        """A destination key connects to its channel."""
        response = client.post("/api/classify", json={"blockId": 7, "channel": "code"})
        assert response.status_code == 200
        assert response.json()["channel"] == "Code"
        assert arena.connected == [(7, "code-abc")]

    def test_custom_channel(self, client, arena):
        """An existing custom channel is used by title."""
        response = client.post("/api/classify", json={"blockId": 7, "customChannel": "moodboard"})
        assert response.status_code == 200
        assert arena.connected == [(7, "moodboard-1")]

    def test_create_new(self, client, arena):
        """createNew makes the channel first."""
        response = client.post(
            "/api/classify", json={"blockId": 7, "customChannel": "Type Specimens", "createNew": True}
        )
        assert response.status_code == 200
        assert response.json()["created"] is True
        assert arena.created == ["Type Specimens"]

    def test_created_only_for_new_channel(self, client, arena):
        """createNew without a custom title creates nothing."""
        response = client.post("/api/classify", json={"blockId": 5, "channel": "code", "createNew": True})
        assert response.status_code == 200
        assert response.json()["created"] is False
        assert arena.created == []
        assert arena.connected == [(5, "code-abc")]

    def test_missing_block_id(self, client):
        """Validation failures are 400."""
        assert client.post("/api/classify", json={"channel": "code"}).status_code == 400

    def test_invalid_channel(self, client):
        """Unknown and skipped keys are rejected."""
        assert client.post("/api/classify", json={"blockId": 1, "channel": "music"}).status_code == 400
        assert client.post("/api/classify", json={"blockId": 1, "channel": "skipped"}).status_code == 400
        assert client.post("/api/classify", json={"blockId": 1}).status_code == 400

    def test_channel_not_found(self, client):
        """A destination without a channel is a 404."""
        response = client.post("/api/classify", json={"blockId": 1, "channel": "writing"})
        assert response.status_code == 404

    def test_upstream_failure(self, client, arena):
        """Are.na errors become 502."""
        arena.fail_with = ArenaAPIError(500, "Server Error")
        response = client.post("/api/classify", json={"blockId": 1, "channel": "code"})
        assert response.status_code == 502


class TestSkipUndoDelete:
    """Test skip, undo and delete routes."""

    def test_skip(self, client, arena):
        """Skipped blocks go to the skipped channel."""
        response = client.post("/api/skip", json={"blockId": 3})
        assert response.status_code == 200
        assert arena.connected == [(3, "classifier-skipped")]

    def test_undo_skip(self, client, arena):
        """Undoing a skip disconnects from the skipped channel."""
        response = client.post("/api/undo", json={"blockId": 3, "isSkip": True})
        assert response.status_code == 200
        assert arena.disconnected == [(3, "classifier-skipped")]

    def test_undo_missing_channel(self, client):
        """Undo without a target is a 400; an absent channel a 404."""
        assert client.post("/api/undo", json={"blockId": 3}).status_code == 400
        assert client.post("/api/undo", json={"blockId": 3, "channel": "ui-ux"}).status_code == 404

    def test_undo_block_not_in_channel(self, client, arena):
        """A 404 from Are.na is passed through."""
        arena.fail_with = ArenaAPIError(404, "Not Found")
        response = client.post("/api/undo", json={"blockId": 3, "channel": "code"})
        assert response.status_code == 404

    def test_delete(self, client):
        """Delete reports how many connections were removed."""
        response = client.post("/api/delete", json={"blockId": 3})
        assert response.status_code == 200
        assert response.json() == {"success": True, "disconnectedFrom": 2}


class TestBlocksAndTriage:
    """Test the unclassified queue and triage session."""

    def _queue(self, arena):
        arena.unclassified = [
            (ArenaBlock(id=10, block_class="Link", title="first"), ["Moodboard"]),
            (ArenaBlock(id=11, block_class="Image", title="second"), ["Moodboard"]),
        ]

    def test_blocks(self, client, arena):
        """Unclassified blocks come with their source channels."""
        self._queue(arena)
        data = client.get("/api/blocks").json()
        assert data["total"] == 2
        assert data["blocks"][0]["sourceChannels"] == ["Moodboard"]
        system = {c["title"]: c["isSystem"] for c in data["channels"]}
        assert system == {"Code": True, "Classifier - Skipped": True, "Moodboard": False}

    def test_triage_flow(self, client, arena):
        """The session walks the queue and reports done at the end."""
        self._queue(arena)
        first = client.get("/api/triage").json()
        assert first["state"] == "presenting"
        assert first["block"]["id"] == 10
        assert client.post("/api/triage/skip").json()["block"]["id"] == 11
        done = client.post("/api/triage/advance").json()
        assert done["state"] == "done"
        assert done["block"] is None
        assert done["skipped"] == 1
        assert client.post("/api/triage/advance").status_code == 409

    def test_triage_reset(self, client, arena):
        """Reset reloads the queue on the next read."""
        self._queue(arena)
        client.get("/api/triage")
        assert client.post("/api/triage/reset").json()["state"] == "loading"
        assert client.get("/api/triage").json()["index"] == 0
