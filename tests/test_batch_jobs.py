"""
Tests for the indexer, style extractor and organiser batch jobs.
"""

import pytest
from openai import OpenAIError

from arena_taste import extraction, indexing
from arena_taste.arena_client import ArenaAPIError
from arena_taste.classifier import build_report, classify_all
from arena_taste.models import ArenaBlock, ArenaChannel, Candidate, ChannelIndex, TagSet
from arena_taste.organizer import apply_changes, organize
from arena_taste.vision import ImageData, VisionModel

from .fakes import FakeArenaClient, FakeChatClient

STYLE_REPLY = (
    '{"colors": {"accent_primary": "#3366ff", "background_primary": "N/A"},'
    ' "borders": {"radius_px": 12, "radius_category": "rounded"},'
    ' "spacing": {"density": "airy"}}'
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
def fake_download(monkeypatch):
    def _download(url, timeout=30.0):
        return None if "broken" in url else ImageData("AAAA", "image/png")

    monkeypatch.setattr(indexing, "download_image", _download)
    monkeypatch.setattr(extraction, "download_image", _download)


def _model(app_config, replies):
    return VisionModel(app_config.model, client=FakeChatClient(replies))


class TestIndexChannel:
    """Test tagging a channel's visual blocks."""

    def _source(self):
        return ChannelSource(
            ArenaChannel(1, "Refs", "refs"),
            [
                ArenaBlock(id=1, block_class="Image", title="one", image_url="https://img/1.png"),
                ArenaBlock(id=2, block_class="Image", title="two", image_url="https://img/2.png"),
                ArenaBlock(id=3, block_class="Link", title="three"),
                ArenaBlock(id=4, block_class="Image", title="four"),
                ArenaBlock(id=5, block_class="Attachment", thumb_url="https://img/broken.png"),
            ],
        )

    def test_counts_and_saves(self, app_config, store, fake_download):
        """Failures are counted and skipped; successes are saved."""
        model = _model(app_config, ['{"component": ["hero"], "one_liner": "Hero"}', "no json here"])
        report = indexing.index_channel("refs", self._source(), model, store, delay=0)
        assert (report.indexed, report.failed, report.skipped, report.total) == (1, 3, 0, 1)
        saved = store.load_index("refs")
        assert [b.id for b in saved.blocks] == [1]
        assert saved.blocks[0].arena_url == "https://www.are.na/block/1"
        assert saved.blocks[0].tags.component == ("hero",)

    def test_already_indexed_blocks_skipped(self, app_config, store, fake_download, sample_index):
        """Existing entries are kept and not re-tagged."""
        store.save_index(sample_index)
        model = _model(app_config, ['{"vibe": ["calm"]}'])
        source = ChannelSource(
            ArenaChannel(1, "Refs", "refs"),
            [
                ArenaBlock(id=1, block_class="Image", image_url="https://img/1.png"),
                ArenaBlock(id=9, block_class="Image", image_url="https://img/9.png"),
            ],
        )
        report = indexing.index_channel("refs", source, model, store, delay=0)
        assert report.skipped == 1
        assert report.indexed == 1
        assert [b.id for b in store.load_index("refs").blocks] == [1, 2, 3, 9]

    def test_force_reindexes(self, app_config, store, fake_download, sample_index):
        """Force ignores the stored index."""
        store.save_index(sample_index)
        model = _model(app_config, ['{"vibe": ["calm"]}'])
        source = ChannelSource(
            ArenaChannel(1, "Refs", "refs"),
            [ArenaBlock(id=1, block_class="Image", image_url="https://img/1.png")],
        )
        report = indexing.index_channel("refs", source, model, store, force=True, delay=0)
        assert report.total == 1
        assert store.load_index("refs").blocks[0].tags.vibe == ("calm",)

    def test_force_without_visual_blocks_saves_empty(self, app_config, store, sample_index):
        """A forced run over a channel with no images replaces the old index."""
        store.save_index(sample_index)
        source = ChannelSource(ArenaChannel(1, "Refs", "refs"), [ArenaBlock(id=3, block_class="Link")])
        report = indexing.index_channel("refs", source, _model(app_config, []), store, force=True, delay=0)
        assert report.total == 0
        assert store.load_index("refs").blocks == []

    def test_model_error_is_per_item(self, app_config, store, fake_download):
        """A failing model call only fails that block."""
        model = _model(app_config, [OpenAIError("quota"), '{"component": ["form"]}'])
        source = ChannelSource(
            ArenaChannel(1, "Refs", "refs"),
            [
                ArenaBlock(id=1, block_class="Image", image_url="https://img/1.png"),
                ArenaBlock(id=2, block_class="Image", image_url="https://img/2.png"),
            ],
        )
        report = indexing.index_channel("refs", source, model, store, delay=0)
        assert (report.indexed, report.failed) == (1, 1)

    def test_dry_run_writes_nothing(self, app_config, store, fake_download):
        """Dry runs never touch the store."""
        model = _model(app_config, ['{"component": ["hero"]}'])
        source = ChannelSource(
            ArenaChannel(1, "Refs", "refs"),
            [ArenaBlock(id=1, block_class="Image", image_url="https://img/1.png")],
        )
        report = indexing.index_channel("refs", source, model, store, dry_run=True, delay=0)
        assert report.indexed == 1
        assert store.load_index("refs") is None

    def test_unknown_channel(self, app_config, store):
        """A missing channel gives None."""
        source = ChannelSource(None, [])
        assert indexing.index_channel("nope", source, _model(app_config, []), store) is None


class TestExtractStyles:
    """Test building a style guide from an index."""

    def test_builds_and_saves_guide(self, app_config, store, fake_download):
        """Good replies are aggregated; bad ones are counted."""
        store.save_index(
            ChannelIndex(
                channel_slug="refs",
                channel_title="Refs",
                indexed_at="",
                blocks=[
                    Candidate(id=1, tags=TagSet(context=("saas",)), image_url="https://img/1.png"),
                    Candidate(id=2, tags=TagSet(), image_url="https://img/broken.png"),
                    Candidate(id=3, tags=TagSet(), image_url=None),
                    Candidate(id=4, tags=TagSet(), image_url="https://img/4.png"),
                ],
            )
        )
        model = _model(app_config, [STYLE_REPLY, "not json"])
        guide, report = extraction.extract_styles("refs", model, store, delay=0)
        assert (report.processed, report.failed) == (1, 3)
        assert guide.common["colors"] == {"accent_primary": "#3366ff"}
        assert guide.common["borders"]["radius_px"] == 12
        assert store.load_style_guide("refs")["common"]["spacing"]["density"] == "airy"

    def test_missing_index(self, app_config, store):
        """Without an index there is nothing to extract."""
        assert extraction.extract_styles("refs", _model(app_config, []), store) is None


class OrganizerSource(FakeArenaClient):
    def __init__(self, channels, block_map):
        super().__init__(channels)
        self.block_map = block_map
        self.labels = {}

    def get_channels(self):
        return list(self.channels)

    def get_all_blocks(self, channels):
        return self.block_map

    def update_block_description(self, block_id, description):
        self.labels[block_id] = description


class TestOrganizer:
    """Test the organise run and applying its report."""

    def _block_map(self):
        return {
            1: (ArenaBlock(id=1, block_class="Link", title="a", source_url="https://github.com/a"), []),
            2: (ArenaBlock(id=2, block_class="Link", title="b", source_url="https://dribbble.com/b"), []),
            3: (ArenaBlock(id=3, block_class="Link", title="c", source_url="https://github.com/c"),
                [ArenaChannel(5, "Code", "code-abc")]),
        }

    def test_organize_report(self, app_config):
        """Blocks already in managed channels are not proposed again."""
        source = OrganizerSource([ArenaChannel(5, "Code", "code-abc")], self._block_map())
        report = organize(source, app_config)
        assert report.total == 3
        assert [b.id for b, _ in report.results] == [1, 2]
        assert report.channels_to_create == ["ui-ux"]

    def test_organize_without_channels(self, app_config):
        """No channels means nothing to do."""
        assert organize(OrganizerSource([], {}), app_config) is None

    def test_organize_uses_given_channels(self, app_config):
        """Passing the channel list avoids fetching it again."""
        existing = [ArenaChannel(5, "Code", "code-abc")]
        source = OrganizerSource(existing, self._block_map())

        def fail():
            raise AssertionError("channels fetched twice")

        source.get_channels = fail
        report = organize(source, app_config, channels=existing)
        assert report.channels_to_create == ["ui-ux"]

    def test_apply_creates_and_connects(self, app_config):
        """Missing channels are created before connecting."""
        existing = [ArenaChannel(5, "Code", "code-abc")]
        source = OrganizerSource(list(existing), self._block_map())
        report = build_report(classify_all(source.block_map), existing)
        summary = apply_changes(source, report, existing, app_config)
        assert source.created == ["UI/UX"]
        assert source.connected == [(1, "code-abc"), (2, "ui/ux")]
        assert (summary.connected, summary.failed) == (2, 0)

    def test_apply_counts_failures(self, app_config):
        """Connection errors are counted and earlier ones stay applied."""
        existing = [ArenaChannel(5, "Code", "code-abc"), ArenaChannel(6, "UI/UX", "ui-ux-1")]
        source = OrganizerSource(list(existing), self._block_map())
        report = build_report(classify_all(source.block_map), existing)

        calls = []

        def connect(block_id, slug):
            calls.append(block_id)
            if block_id == 2:
                raise ArenaAPIError(500, "Server Error")
            source.connected.append((block_id, slug))

        source.connect_block = connect
        summary = apply_changes(source, report, existing, app_config)
        assert calls == [1, 2]
        assert source.connected == [(1, "code-abc")]
        assert (summary.connected, summary.failed) == (1, 1)
