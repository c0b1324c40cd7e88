from __future__ import annotations

import argparse
import time
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from .arena_client import ArenaAPIError, ArenaClient
from .classifier import (
    OrganizeReport,
    build_report,
    classify_all,
    find_existing_channel,
    report_frame,
)
from .config import AppConfig, configure_logging, load_config, require
from .labeler import generate_labels
from .models import ArenaChannel, Destination

RULE = "━" * 50


@dataclass
class ApplySummary:
    connected: int = 0
    failed: int = 0
    labeled: int = 0


def _title_for(key: str) -> str:
    destination = Destination.lookup(key)
    return destination.title if destination else key


def organize(
    client: ArenaClient,
    config: AppConfig,
    channels: Optional[Sequence[ArenaChannel]] = None,
) -> Optional[OrganizeReport]:
    if channels is None:
        channels = client.get_channels()
    if not channels:
        print("No channels found. Nothing to organize.")
        return None

    print("\n📚 Fetching blocks from all channels...")
    block_map = client.get_all_blocks(channels)
    print(f"\n   Total unique blocks: {len(block_map)}")

    print("\n🏷️  Classifying blocks...")
    results = classify_all(
        block_map, min_description_length=config.classifier.min_description_length
    )
    return build_report(results, channels)


def display_report(report: OrganizeReport, examples: int = 5) -> None:
    print("\n📊 Classification Report")
    print(RULE)
    print(f"Total blocks:     {report.total}")
    print(f"To be organized:  {report.classified}")
    print(f"Skipped:          {report.skipped}")
    print(RULE)

    if report.channels_to_create:
        print("\n📁 Channels to create:")
        for key in report.channels_to_create:
            print(f"   + {_title_for(key)}")

    frame = report_frame(report)
    if frame.empty:
        return
    print("\n📋 Blocks by target channel:")
    for key, group in frame.groupby("destination", sort=False):
        print(f"\n   {_title_for(str(key))} ({len(group)} blocks)")
        for title in group["title"].head(examples):
            truncated = title if len(title) <= 50 else title[:47] + "..."
            print(f"      • {truncated}")
        if len(group) > examples:
            print(f"      ... and {len(group) - examples} more")


def apply_changes(
    client: ArenaClient,
    report: OrganizeReport,
    existing: Sequence[ArenaChannel],
    config: AppConfig,
    fetch_metadata: bool = False,
) -> ApplySummary:
    """Create missing channels, connect blocks and optionally label them.

    Connections already made stay in place when a later one fails.
    """

    print("\n🚀 Applying changes...")
    delay = config.arena.request_delay
    channel_map: Dict[str, ArenaChannel] = {}
    for destination in Destination.categories():
        found = find_existing_channel(destination.key, existing)
        if found is not None:
            channel_map[destination.key] = found

    for key in report.channels_to_create:
        title = _title_for(key)
        print(f"   📁 Creating channel: {title}")
        try:
            channel_map[key] = client.create_channel(title, "private")
        except ArenaAPIError as exc:
            print(f"   ❌ Failed to create channel {title}: {exc}")

    summary = ApplySummary()
    for block, decision in report.results:
        for key in decision.destinations:
            target = channel_map.get(key)
            if target is None:
                print(f"   ⚠️  Channel not found: {key}")
                summary.failed += 1
                continue
            try:
                print(f"   🔗 Connecting block {block.id} to {target.title}")
                client.connect_block(block.id, target.slug)
                summary.connected += 1
                time.sleep(delay)
            except ArenaAPIError as exc:
                print(f"   ❌ Failed to connect block {block.id}: {exc}")
                summary.failed += 1

    if fetch_metadata:
        print("\n📝 Generating labels...")
        threshold = config.classifier.label_min_description_length
        needing = [
            block
            for block, _ in report.results
            if not block.description or len(block.description.strip()) < threshold
        ]
        labels = generate_labels(
            needing,
            fetch_metadata=True,
            min_description_length=threshold,
            timeout=config.classifier.metadata_timeout,
        )
        for block_id, label in labels.items():
            try:
                print(f"   📝 Labeling block {block_id}")
                client.update_block_description(block_id, label)
                summary.labeled += 1
                time.sleep(delay)
            except ArenaAPIError as exc:
                print(f"   ❌ Failed to label block {block_id}: {exc}")

    print("\n✅ Done!")
    print(f"   Connected: {summary.connected}")
    print(f"   Failed: {summary.failed}")
    return summary


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Sort Are.na blocks into topical channels using URL and keyword rules."
    )
    parser.add_argument("--apply", action="store_true", help="Make the changes instead of previewing them.")
    parser.add_argument("--fetch-metadata", action="store_true", help="Fetch page metadata and label blocks.")
    parser.add_argument("--log-level", type=str, default="WARNING")
    return parser.parse_args()


def main():
    args = _parse_args()
    config = load_config()
    configure_logging(args.log_level)
    require(config, "ARENA_TOKEN", "ARENA_USER_SLUG")

    print("\n🗂️  Are.na Organizer")
    print(RULE)
    print(f"Mode: {'🔴 APPLY (making changes)' if args.apply else '🟢 DRY RUN (preview only)'}")
    print(f"User: {config.arena.user_slug}")
    print(RULE + "\n")

    client = ArenaClient(config.arena)
    existing = client.get_channels()
    report = organize(client, config, channels=existing)
    if report is None:
        return
    display_report(report)

    if args.apply:
        apply_changes(client, report, existing, config, fetch_metadata=args.fetch_metadata)
    else:
        print("\n💡 To apply these changes, run:")
        print("   arena-organize --apply")
        print("\n   Or with auto-labeling:")
        print("   arena-organize --apply --fetch-metadata")


if __name__ == "__main__":
    main()
