"""
Tests for the anti-pattern batch job.
"""

import pytest
from openai import OpenAIError

from arena_taste import anti_patterns
from arena_taste.anti_patterns import (
    AntiPattern,
    AntiPatternAnalysis,
    CollectionItem,
    analyze_channel,
    build_collection_prompt,
    collect_blocks,
)
from arena_taste.labeler import PageMetadata
from arena_taste.models import ArenaBlock, ArenaChannel
from arena_taste.styles import parse_anti_patterns
from arena_taste.vision import ImageData, VisionModel

from .fakes import FakeChatClient

REPLY = (
    '{"anti_patterns": ['
    '{"rule": "Never use gradient buttons", "confidence": "high", "evidence": "All buttons are flat"},'
    '{"rule": "Avoid serif body text", "confidence": "Medium"},'
    '{"confidence": "high"}],'
    ' "insufficient_evidence": ["Dark mode preference"],'
    ' "summary": "Rejects decoration."}'
)


class ChannelSource:
    def __init__(self, channel, blocks):
        self.channel = channel
        self.blocks = blocks

    def get_channel(self, slug):
        return self.channel

    def get_channel_blocks(self, slug):
        return list(self.blocks)


@pytest.fixture
def offline(monkeypatch):
    fetched = []

    def _download(url, timeout=30.0):
        return None if "broken" in url else ImageData("AAAA", "image/png")

    def _metadata(url, timeout=5.0):
        fetched.append(url)
        return PageMetadata(title="Essay", description="On restraint")

    monkeypatch.setattr(anti_patterns, "download_image", _download)
    monkeypatch.setattr(anti_patterns, "fetch_page_metadata", _metadata)
    return fetched


def _blocks():
    return [
        ArenaBlock(id=1, block_class="Image", title="Hero", image_url="https://img/1.png"),
        ArenaBlock(id=2, block_class="Image", title="Broken", image_url="https://img/broken.png"),
        ArenaBlock(id=3, block_class="Text", title="Note", content="Less, but better"),
        ArenaBlock(id=4, block_class="Link", title=None, source_url="https://essay.example"),
        ArenaBlock(id=5, block_class="Media", title="Video"),
    ]


class TestAntiPatternAnalysis:
    """Test decoding replies and rendering anti-rules."""

    def test_from_payload(self):
        """Rules without text are dropped and confidence is normalised."""
        analysis = AntiPatternAnalysis.from_payload(
            {
                "anti_patterns": [
                    {"rule": "Never use gradient buttons", "confidence": "high"},
                    {"rule": "Avoid serif body text", "confidence": "Medium"},
                    {"rule": "Avoid clip art", "confidence": "certain"},
                    {"confidence": "high"},
                    "stray",
                ],
                "summary": " Rejects decoration. ",
            }
        )
        assert [ap.confidence for ap in analysis.anti_patterns] == ["high", "medium", "medium"]
        assert analysis.summary == "Rejects decoration."
        assert analysis.insufficient_evidence == []

    def test_markdown_reads_back(self):
        """Rendered rules parse back, with the high-confidence filter."""
        analysis = AntiPatternAnalysis(
            summary="Rejects decoration.",
            anti_patterns=[
                AntiPattern("Never use gradient buttons", "high", "All buttons are flat"),
                AntiPattern("Avoid serif body text", "medium"),
            ],
            insufficient_evidence=["Dark mode preference"],
        )
        markdown = analysis.to_markdown("Refs")
        assert markdown.startswith("# Anti-Rules: Refs")
        assert "**Evidence:** All buttons are flat" in markdown
        assert "- Dark mode preference" in markdown
        assert parse_anti_patterns(markdown) == ["Never use gradient buttons", "Avoid serif body text"]
        assert parse_anti_patterns(markdown, high_confidence_only=True) == ["Never use gradient buttons"]


class TestCollection:
    """Test turning blocks into prompt material."""

    def test_collect_blocks(self, offline):
        """Images, text and links are kept; failures and other kinds are not."""
        items = collect_blocks(_blocks(), delay=0)
        assert [(item.block_id, item.kind) for item in items] == [(1, "image"), (3, "text"), (4, "link")]
        assert items[1].text == "Less, but better"
        assert items[2].title == "https://essay.example"
        assert items[2].text == "Title: Essay\nDescription: On restraint"
        assert offline == ["https://essay.example"]

    def test_image_cap_and_no_metadata(self, offline):
        """Images past the cap are skipped and links can stay unfetched."""
        items = collect_blocks(_blocks(), max_images=0, fetch_metadata=False, delay=0)
        assert [item.kind for item in items] == ["text", "link"]
        assert items[1].text == "[Link: https://essay.example]"
        assert offline == []

    def test_prompt_numbers_images(self):
        """Images are referenced by position; other items carry their text."""
        prompt = build_collection_prompt(
            [
                CollectionItem(1, "image", "Hero", image=ImageData("AAAA")),
                CollectionItem(3, "text", None, "Less, but better"),
                CollectionItem(7, "image", None, image=ImageData("BBBB")),
            ]
        )
        assert "[IMAGE 1: Hero]" in prompt
        assert "[TEXT]\nLess, but better" in prompt
        assert "[IMAGE 2]" in prompt
        assert prompt.index("=== BEGIN COLLECTION ===") < prompt.index("=== END COLLECTION ===")


class TestAnalyzeChannel:
    """Test the full anti-pattern run against fakes."""

    def _source(self):
        return ChannelSource(ArenaChannel(1, "Refs", "refs"), _blocks())

    def test_writes_anti_rules(self, app_config, store, offline):
        """A decoded reply is saved as anti-rules.md and read by the store."""
        chat = FakeChatClient([REPLY])
        model = VisionModel(app_config.model, client=chat)
        analysis = analyze_channel("refs", self._source(), model, store, delay=0)
        assert [ap.rule for ap in analysis.high_confidence()] == ["Never use gradient buttons"]
        assert store.load_anti_patterns("refs") == ["Never use gradient buttons", "Avoid serif body text"]
        content = chat.calls[0]["messages"][0]["content"]
        assert [part["type"] for part in content] == ["image_url", "text"]
        assert len(list(store.channel_dir("refs").glob("anti-patterns-*.md"))) == 1

    def test_unparseable_keeps_raw_only(self, app_config, store, offline):
        """Without JSON only the raw reply is kept."""
        model = VisionModel(app_config.model, client=FakeChatClient(["I can't tell."]))
        assert analyze_channel("refs", self._source(), model, store, delay=0) is None
        assert not store.anti_rules_path("refs").exists()
        assert len(list(store.channel_dir("refs").glob("anti-patterns-*.md"))) == 1

    def test_model_error(self, app_config, store, offline):
        """A failed request writes nothing."""
        model = VisionModel(app_config.model, client=FakeChatClient([OpenAIError("quota")]))
        assert analyze_channel("refs", self._source(), model, store, delay=0) is None
        assert not store.channel_dir("refs").exists()

    def test_unknown_channel(self, app_config, store):
        """A missing channel gives None without calling the model."""
        chat = FakeChatClient([REPLY])
        model = VisionModel(app_config.model, client=chat)
        assert analyze_channel("nope", ChannelSource(None, []), model, store) is None
        assert chat.calls == []

    def test_empty_channel(self, app_config, store, offline):
        """Nothing usable means no model call."""
        chat = FakeChatClient([REPLY])
        source = ChannelSource(ArenaChannel(1, "Refs", "refs"), [ArenaBlock(id=5, block_class="Media")])
        assert analyze_channel("refs", source, VisionModel(app_config.model, client=chat), store) is None
        assert chat.calls == []
