from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


ENV_HINT = """Create a .env file with:
   ARENA_TOKEN=your_token_here
   ARENA_USER_SLUG=your_username
   GEMINI_API_KEY=your_gemini_key"""


@dataclass
class ArenaSettings:
    """Credentials and paging knobs for the Are.na API."""

    token: Optional[str] = None
    user_slug: Optional[str] = None
    api_base: str = "https://api.are.na/v2"
    per_page: int = 50
    request_delay: float = 0.2
    timeout: float = 30.0


@dataclass
class ModelSettings:
    """Gemini, reached through its OpenAI-compatible endpoint."""

    api_key: Optional[str] = None
    model: str = "gemini-2.0-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    max_tokens: int = 1500
    request_delay: float = 0.2


@dataclass
class StorageSettings:
    index_dir: Path = Path("taste-profiles")
    default_channel: str = "ui-ux-uqgmlf-rw1i"

    def channel_dir(self, channel_slug: str) -> Path:
        return self.index_dir / channel_slug


@dataclass
class ClassifierSettings:
    """Thresholds for the rule-based organiser."""

    min_description_length: int = 10
    label_min_description_length: int = 20
    metadata_timeout: float = 5.0


@dataclass
class MatchSettings:
    limit: int = 6
    multi_image_limit: int = 8
    explain: bool = False


@dataclass
class AppConfig:
    arena: ArenaSettings = field(default_factory=ArenaSettings)
    model: ModelSettings = field(default_factory=ModelSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    classifier: ClassifierSettings = field(default_factory=ClassifierSettings)
    matching: MatchSettings = field(default_factory=MatchSettings)


def load_config(env_file: Optional[str] = None) -> AppConfig:
    """Build an AppConfig from the process environment (and .env, if present)."""

    load_dotenv(env_file)
    config = AppConfig()
    config.arena.token = os.getenv("ARENA_TOKEN") or None
    config.arena.user_slug = os.getenv("ARENA_USER_SLUG") or None
    config.model.api_key = os.getenv("GEMINI_API_KEY") or None
    config.model.model = os.getenv("GEMINI_MODEL", config.model.model)
    index_dir = os.getenv("TASTE_INDEX_DIR")
    if index_dir:
        config.storage.index_dir = Path(index_dir)
    config.storage.default_channel = os.getenv(
        "ARENA_DEFAULT_CHANNEL", config.storage.default_channel
    )
    return config


def require(config: AppConfig, *names: str) -> None:
    """Exit with status 1 when any of the named credentials is missing."""

    values = {
        "ARENA_TOKEN": config.arena.token,
        "ARENA_USER_SLUG": config.arena.user_slug,
        "GEMINI_API_KEY": config.model.api_key,
    }
    missing = [name for name in names if not values.get(name)]
    if missing:
        print(f"❌ Missing {' or '.join(missing)} in .env file")
        print(f"   {ENV_HINT}")
        sys.exit(1)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
