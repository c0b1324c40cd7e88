"""
Pytest fixtures shared by the test suite.

Fakes for the network collaborators live in fakes.py.
"""

import pytest

from arena_taste.config import AppConfig, ArenaSettings, ModelSettings
from arena_taste.models import ArenaBlock, Candidate, ChannelIndex, TagSet
from arena_taste.storage import IndexStore


@pytest.fixture
def app_config(tmp_path):
    config = AppConfig()
    config.arena = ArenaSettings(token="token", user_slug="someone", request_delay=0)
    config.model = ModelSettings(api_key="key", request_delay=0)
    config.storage.index_dir = tmp_path / "taste-profiles"
    config.storage.default_channel = "refs"
    return config


@pytest.fixture
def store(app_config):
    return IndexStore(app_config.storage.index_dir)


@pytest.fixture
def sample_index():
    return ChannelIndex(
        channel_slug="refs",
        channel_title="Refs",
        indexed_at="2024-01-01T00:00:00+00:00",
        blocks=[
            Candidate(id=1, tags=TagSet(component=("hero",), vibe=("bold",)), one_liner="Bold hero"),
            Candidate(id=2, tags=TagSet(component=("pricing",), style=("minimal",)), one_liner="Pricing table"),
            Candidate(id=3, tags=TagSet(context=("saas",)), one_liner="SaaS dashboard"),
        ],
    )


@pytest.fixture
def link_block():
    return ArenaBlock(
        id=42,
        block_class="Link",
        title="Stripe billing API docs",
        source_url="https://stripe.com/docs",
    )
