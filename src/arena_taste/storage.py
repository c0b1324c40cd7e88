"""Per-channel JSON files under the taste-profiles directory."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import ChannelIndex
from .styles import AggregatedStyleGuide, parse_anti_patterns

INDEX_FILE = "index.json"
STYLE_GUIDE_FILE = "style-guide.json"
ANTI_RULES_FILE = "anti-rules.md"


class IndexStore:
    def __init__(self, root: Path):
        self.root = Path(root)

    def channel_dir(self, channel_slug: str) -> Path:
        return self.root / channel_slug

    def _read_json(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _write_text(self, path: Path, text: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def _write_json(self, path: Path, payload: Dict[str, Any]) -> Path:
        return self._write_text(path, json.dumps(payload, indent=2, ensure_ascii=False))

    def index_path(self, channel_slug: str) -> Path:
        return self.channel_dir(channel_slug) / INDEX_FILE

    def load_index(self, channel_slug: str) -> Optional[ChannelIndex]:
        raw = self._read_json(self.index_path(channel_slug))
        return ChannelIndex.from_dict(raw) if raw is not None else None

    def save_index(self, index: ChannelIndex) -> Path:
        return self._write_json(self.index_path(index.channel_slug), index.to_dict())

    def style_guide_path(self, channel_slug: str) -> Path:
        return self.channel_dir(channel_slug) / STYLE_GUIDE_FILE

    def load_style_guide(self, channel_slug: str) -> Optional[Dict[str, Any]]:
        return self._read_json(self.style_guide_path(channel_slug))

    def save_style_guide(self, channel_slug: str, guide: AggregatedStyleGuide) -> Path:
        return self._write_json(self.style_guide_path(channel_slug), guide.to_dict())

    def anti_rules_path(self, channel_slug: str) -> Path:
        return self.channel_dir(channel_slug) / ANTI_RULES_FILE

    def load_anti_patterns(self, channel_slug: str, high_confidence_only: bool = False) -> List[str]:
        path = self.anti_rules_path(channel_slug)
        if not path.exists():
            return []
        return parse_anti_patterns(path.read_text(encoding="utf-8"), high_confidence_only)

    def save_anti_patterns(self, channel_slug: str, markdown: str) -> Path:
        return self._write_text(self.anti_rules_path(channel_slug), markdown)

    def save_raw_analysis(self, channel_slug: str, text: str, stamp: str) -> Path:
        """Keep the unedited model reply next to the rules, one file per run."""
        path = self.channel_dir(channel_slug) / f"anti-patterns-{stamp}.md"
        return self._write_text(path, text)
