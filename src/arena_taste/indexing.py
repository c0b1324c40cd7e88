from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from openai import OpenAIError

from .arena_client import ArenaClient
from .config import AppConfig, configure_logging, load_config, require
from .models import Candidate, ChannelIndex
from .storage import IndexStore
from .vision import Unparseable, VisionModel, download_image

LOGGER = logging.getLogger(__name__)

BANNER = "═" * 63


@dataclass
class IndexReport:
    indexed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def index_channel(
    channel_slug: str,
    client: ArenaClient,
    model: VisionModel,
    store: IndexStore,
    force: bool = False,
    dry_run: bool = False,
    delay: float = 0.2,
) -> Optional[IndexReport]:
    """Tag every visual block of a channel and persist the channel index.

    Already indexed blocks are kept unless ``force`` is set. Items that fail
    (no image, download error, unreadable model output) are counted and
    skipped; earlier progress is never rolled back.
    """

    existing = None if force else store.load_index(channel_slug)
    existing_ids = existing.block_ids() if existing else set()

    channel = client.get_channel(channel_slug)
    if channel is None:
        print("❌ Channel not found")
        return None

    print("\n📥 Fetching blocks...")
    blocks = client.get_channel_blocks(channel_slug)
    visual = [b for b in blocks if b.is_visual]
    to_index = [b for b in visual if b.id not in existing_ids]
    print(f"   Found {len(blocks)} blocks, {len(visual)} visual, {len(to_index)} need indexing\n")

    indexed_blocks: List[Candidate] = list(existing.blocks) if existing else []
    report = IndexReport(skipped=len(visual) - len(to_index))

    for i, block in enumerate(to_index, 1):
        print(f"[{i}/{len(to_index)}] {block.title or '(untitled)'}")
        image_url = block.image_url or block.thumb_url
        if not image_url:
            print("   ⚠️ No image URL, skipping")
            report.failed += 1
            continue

        image = download_image(image_url)
        if image is None:
            print("   ⚠️ Failed to download image")
            report.failed += 1
            continue

        try:
            extraction = model.extract_tags(image)
        except OpenAIError as exc:
            LOGGER.warning("Tagging failed for block %s: %s", block.id, exc)
            print(f"   ❌ Error: {exc}")
            report.failed += 1
            continue

        if isinstance(extraction, Unparseable):
            print(f"   ⚠️ {extraction.reason}")
            report.failed += 1
            continue

        print(f"   ✅ {', '.join(extraction.tags.component) or 'tagged'}")
        entry = Candidate(
            id=block.id,
            title=block.title,
            arena_url=f"https://www.are.na/block/{block.id}",
            image_url=image_url,
            tags=extraction.tags,
            one_liner=extraction.one_liner,
            indexed_at=_now(),
        )
        if dry_run:
            print(f"   📝 Would add: {extraction.one_liner[:50]}...")
        else:
            indexed_blocks.append(entry)
        report.indexed += 1
        time.sleep(delay)

    report.total = len(indexed_blocks)
    if not dry_run:
        path = store.save_index(
            ChannelIndex(
                channel_slug=channel_slug,
                channel_title=channel.title,
                indexed_at=_now(),
                blocks=indexed_blocks,
            )
        )
        print(f"\n📁 Saved to: {path}")
    return report


def run_indexer(config: AppConfig, channel_slug: str, force: bool, dry_run: bool) -> Optional[IndexReport]:
    print(BANNER)
    print("                    BLOCK INDEXER")
    print(BANNER + "\n")
    print(f"📂 Target channel: {channel_slug}")
    if dry_run:
        print("🔍 DRY RUN - no changes will be made")
    if force:
        print("⚠️  FORCE MODE - re-indexing all blocks")

    report = index_channel(
        channel_slug,
        ArenaClient(config.arena),
        VisionModel(config.model),
        IndexStore(config.storage.index_dir),
        force=force,
        dry_run=dry_run,
        delay=config.model.request_delay,
    )
    if report is None:
        return None

    print(f"\n{BANNER}\n                    ✅ COMPLETE\n{BANNER}")
    print("\n📊 Results:")
    print(f"   Indexed: {report.indexed}")
    print(f"   Failed: {report.failed}")
    print(f"   Skipped (already indexed): {report.skipped}")
    print(f"   Total in index: {report.total}")
    return report


def _parse_args(default_channel: str) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tag the visual blocks of an Are.na channel.")
    parser.add_argument("--channel", type=str, default=default_channel, help="Channel slug to index.")
    parser.add_argument("--force", action="store_true", help="Re-index blocks already in the index.")
    parser.add_argument("--dry-run", action="store_true", help="Tag blocks without saving the index.")
    parser.add_argument("--log-level", type=str, default="WARNING")
    return parser.parse_args()


def main():
    config = load_config()
    args = _parse_args(config.storage.default_channel)
    configure_logging(args.log_level)
    require(config, "ARENA_TOKEN", "ARENA_USER_SLUG", "GEMINI_API_KEY")
    run_indexer(config, args.channel, force=args.force, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
