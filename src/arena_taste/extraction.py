from __future__ import annotations

import argparse
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from openai import OpenAIError

from .config import AppConfig, configure_logging, load_config, require
from .storage import IndexStore
from .styles import STYLE_EXTRACTION_PROMPT, AggregatedStyleGuide, StyleObservation, aggregate
from .vision import Unparseable, VisionModel, download_image

BANNER = "═" * 63


@dataclass
class ExtractionReport:
    processed: int = 0
    failed: int = 0


def extract_styles(
    channel_slug: str,
    model: VisionModel,
    store: IndexStore,
    delay: float = 0.3,
) -> Optional[Tuple[AggregatedStyleGuide, ExtractionReport]]:
    index = store.load_index(channel_slug)
    if index is None:
        print(f"❌ No index found for {channel_slug}")
        print(f"   Run the indexer first: arena-index --channel={channel_slug}")
        return None

    print(f"📂 Channel: {index.channel_title}")
    print(f"   {len(index.blocks)} blocks in index\n")

    anti_patterns = store.load_anti_patterns(channel_slug)
    print(f"📜 Loaded {len(anti_patterns)} anti-patterns\n")

    observations: List[StyleObservation] = []
    report = ExtractionReport()

    for i, block in enumerate(index.blocks, 1):
        print(f"[{i}/{len(index.blocks)}] {block.title or block.one_liner[:40]}...")
        if not block.image_url:
            print("   ⚠️ No image URL")
            report.failed += 1
            continue

        image = download_image(block.image_url)
        if image is None:
            print("   ⚠️ Failed to download")
            report.failed += 1
            continue

        try:
            result = model.generate_json(STYLE_EXTRACTION_PROMPT, image)
        except OpenAIError as exc:
            print(f"   ❌ Error: {exc}")
            report.failed += 1
            continue

        if isinstance(result, Unparseable):
            print("   ⚠️ No valid JSON")
            report.failed += 1
            continue

        styles = result.data
        observations.append(
            StyleObservation(block_id=block.id, context=block.tags.context, styles=styles)
        )
        borders = styles.get("borders") if isinstance(styles.get("borders"), dict) else {}
        colors = styles.get("colors") if isinstance(styles.get("colors"), dict) else {}
        print(f"   ✅ radius: {borders.get('radius_px')}px, accent: {colors.get('accent_primary')}")
        report.processed += 1
        time.sleep(delay)

    print("\n📊 Aggregating results...\n")
    guide = aggregate(observations, anti_patterns)
    path = store.save_style_guide(channel_slug, guide)

    print(f"{BANNER}\n                    ✅ COMPLETE\n{BANNER}")
    print("\n📊 Results:")
    print(f"   Processed: {report.processed}")
    print(f"   Failed: {report.failed}")
    print(f"   Context groups: {', '.join(guide.contexts) or 'none'}")
    print(f"\n📁 Saved to: {path}")

    common = guide.common
    print("\n📋 Style Summary:")
    print(f"   Background: {common['colors'].get('background_primary')}")
    print(f"   Accent: {common['colors'].get('accent_primary')}")
    print(f"   Radius: {common['borders']['radius_px']}px ({common['borders'].get('radius_category')})")
    print(f"   Density: {common['spacing'].get('density')}")
    print(f"   Shadows: {common['elevation'].get('shadow_presence')}")
    print(f"   Typography: {common['typography'].get('family_vibe')}")
    return guide, report


def _parse_args(default_channel: str) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build a style guide from an indexed channel.")
    parser.add_argument("--channel", type=str, default=default_channel, help="Channel slug to analyse.")
    parser.add_argument("--log-level", type=str, default="WARNING")
    return parser.parse_args()


def main():
    config: AppConfig = load_config()
    args = _parse_args(config.storage.default_channel)
    configure_logging(args.log_level)
    require(config, "GEMINI_API_KEY")

    print(BANNER)
    print("                    STYLE EXTRACTOR")
    print(BANNER + "\n")
    extract_styles(
        args.channel,
        VisionModel(config.model),
        IndexStore(config.storage.index_dir),
        delay=config.model.request_delay,
    )


if __name__ == "__main__":
    main()
