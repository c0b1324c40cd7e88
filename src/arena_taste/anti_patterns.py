"""
Infer what a curated channel avoids and write it out as anti-rules.

The whole channel goes to the model in one request: images inline, text and
link blocks as labelled snippets. The reply is kept verbatim next to the
index, and when it decodes it is rendered to ``anti-rules.md``, which the
style extractor and the reference pack export read back.
"""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from openai import OpenAIError

from .arena_client import ArenaClient
from .config import AppConfig, configure_logging, load_config, require
from .labeler import fetch_page_metadata
from .models import ArenaBlock
from .storage import IndexStore
from .vision import ImageData, Unparseable, VisionModel, decode_json_blob, download_image

LOGGER = logging.getLogger(__name__)

BANNER = "═" * 63

CONFIDENCE_LEVELS = ("high", "medium")

ANTI_PATTERN_PROMPT = """You are looking at a collection one person curated on Are.na.

Work out what this person AVOIDS: the patterns that are conspicuously absent from everything they chose to keep.

Rules:
1. Only list anti-patterns you are confident about. Leave out guesses.
2. Cite evidence from the collection for every rule.
3. Prefer 5-10 strong rules over a long speculative list.
4. Reason from absence: what do the saved items consistently NOT do?
5. Be concrete. "Avoid bad design" is useless; "Never use more than two font families" is actionable.

Respond with JSON only:
{
  "anti_patterns": [
    {"rule": "Never do X", "confidence": "high" | "medium", "evidence": "What in the collection shows this"}
  ],
  "insufficient_evidence": ["Ideas considered but not supported well enough"],
  "summary": "One paragraph on what this person's taste rejects"
}

If the collection does not carry enough signal, say so in the summary and keep the list short."""


@dataclass(frozen=True)
class CollectionItem:
    block_id: int
    kind: str
    title: Optional[str] = None
    text: str = ""
    image: Optional[ImageData] = None


@dataclass(frozen=True)
class AntiPattern:
    rule: str
    confidence: str = "medium"
    evidence: str = ""


@dataclass
class AntiPatternAnalysis:
    summary: str = ""
    anti_patterns: List[AntiPattern] = field(default_factory=list)
    insufficient_evidence: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "AntiPatternAnalysis":
        rules = []
        for entry in data.get("anti_patterns") or []:
            if not isinstance(entry, dict):
                continue
            rule = str(entry.get("rule") or "").strip()
            if not rule:
                continue
            confidence = str(entry.get("confidence") or "").strip().lower()
            rules.append(
                AntiPattern(
                    rule=rule,
                    confidence=confidence if confidence in CONFIDENCE_LEVELS else "medium",
                    evidence=str(entry.get("evidence") or "").strip(),
                )
            )
        considered = [str(item).strip() for item in data.get("insufficient_evidence") or [] if str(item).strip()]
        return cls(
            summary=str(data.get("summary") or "").strip(),
            anti_patterns=rules,
            insufficient_evidence=considered,
        )

    def high_confidence(self) -> List[AntiPattern]:
        return [ap for ap in self.anti_patterns if ap.confidence == "high"]

    def to_markdown(self, channel_title: str) -> str:
        lines = [f"# Anti-Rules: {channel_title}", ""]
        if self.summary:
            lines += [f"**Summary:** {self.summary}", ""]
        lines += ["## Anti-Patterns", ""]
        for ap in self.anti_patterns:
            lines.append(f"### ❌ {ap.rule}")
            lines += [f"**Confidence:** {ap.confidence}", ""]
            if ap.evidence:
                lines += [f"**Evidence:** {ap.evidence}", ""]
            lines += ["---", ""]
        if self.insufficient_evidence:
            lines += ["## Insufficient Evidence", "", "Considered but not confirmed:"]
            lines += [f"- {item}" for item in self.insufficient_evidence]
            lines.append("")
        return "\n".join(lines)


def collect_blocks(
    blocks: Sequence[ArenaBlock],
    max_images: int = 30,
    fetch_metadata: bool = True,
    delay: float = 0.1,
) -> List[CollectionItem]:
    """Turn channel blocks into prompt material; unsupported blocks are dropped."""

    items: List[CollectionItem] = []
    images = 0
    print(f"\n📦 Processing {len(blocks)} blocks...")
    for i, block in enumerate(blocks, 1):
        print(f"   [{i}/{len(blocks)}] {block.block_class}: {block.title or '(untitled)'}")
        if block.is_visual:
            url = block.image_url or block.thumb_url
            if not url or images >= max_images:
                continue
            image = download_image(url)
            if image is None:
                print("      ⚠️ Image unavailable, skipping")
                continue
            images += 1
            items.append(
                CollectionItem(block.id, "image", block.title, block.description or block.title or "", image)
            )
        elif block.block_class == "Text":
            items.append(CollectionItem(block.id, "text", block.title, block.content or block.description or ""))
        elif block.block_class == "Link" and block.source_url:
            text = f"[Link: {block.source_url}]"
            if fetch_metadata:
                metadata = fetch_page_metadata(block.source_url)
                if metadata is not None and (metadata.title or metadata.description):
                    text = "\n".join(
                        part
                        for part in (
                            f"Title: {metadata.title}" if metadata.title else "",
                            f"Description: {metadata.description}" if metadata.description else "",
                        )
                        if part
                    )
                time.sleep(delay)
            items.append(
                CollectionItem(block.id, "link", block.title or block.source_title or block.source_url, text)
            )
    return items


def build_collection_prompt(items: Sequence[CollectionItem]) -> str:
    """Prompt text listing every item; images are numbered in request order."""

    sections = [ANTI_PATTERN_PROMPT, "", "=== BEGIN COLLECTION ===", ""]
    image_number = 0
    for item in items:
        label = f": {item.title}" if item.title else ""
        if item.image is not None:
            image_number += 1
            sections.append(f"[IMAGE {image_number}{label}]")
        else:
            sections.append(f"[{item.kind.upper()}{label}]")
            sections.append(item.text)
        sections.append("")
    sections += [
        "=== END COLLECTION ===",
        "",
        "Now analyze for ANTI-PATTERNS. Be selective and cite evidence.",
    ]
    return "\n".join(sections)


def analyze_channel(
    channel_slug: str,
    client: ArenaClient,
    model: VisionModel,
    store: IndexStore,
    max_images: int = 30,
    fetch_metadata: bool = True,
    delay: float = 0.1,
) -> Optional[AntiPatternAnalysis]:
    channel = client.get_channel(channel_slug)
    if channel is None:
        print("❌ Channel not found")
        return None

    print("\n📥 Fetching blocks...")
    blocks = client.get_channel_blocks(channel_slug)
    print(f"   Found {len(blocks)} blocks")

    items = collect_blocks(blocks, max_images=max_images, fetch_metadata=fetch_metadata, delay=delay)
    if not items:
        print("\n⚠️ Nothing in the channel can be analyzed")
        return None
    print(f"\n✅ Processed {len(items)} blocks")

    print("\n🤖 Asking the model for anti-patterns...")
    images = [item.image for item in items if item.image is not None]
    try:
        reply = model.generate_many(build_collection_prompt(items), images)
    except OpenAIError as exc:
        LOGGER.error("Anti-pattern analysis failed for %s: %s", channel_slug, exc)
        print(f"❌ Error: {exc}")
        return None

    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    store.save_raw_analysis(channel_slug, reply, stamp)

    result = decode_json_blob(reply)
    if isinstance(result, Unparseable):
        LOGGER.warning("Unparseable anti-pattern reply: %s", result.reason)
        print("\n⚠️ Could not parse JSON, raw output saved.")
        return None

    analysis = AntiPatternAnalysis.from_payload(result.data)
    path = store.save_anti_patterns(channel_slug, analysis.to_markdown(channel.title))

    print(f"\n📊 {len(analysis.anti_patterns)} anti-patterns, {len(analysis.high_confidence())} high confidence")
    for ap in analysis.anti_patterns:
        print(f"   ❌ {ap.rule} ({ap.confidence})")
    print(f"\n📁 Saved to: {path}")
    return analysis


def _parse_args(default_channel: str) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Infer what a curated Are.na channel avoids.")
    parser.add_argument("--channel", type=str, default=default_channel, help="Channel slug to analyse.")
    parser.add_argument("--max-images", type=int, default=30, help="Images sent with the request.")
    parser.add_argument("--no-metadata", action="store_true", help="Do not fetch pages for link blocks.")
    parser.add_argument("--log-level", type=str, default="WARNING")
    return parser.parse_args()


def main():
    config: AppConfig = load_config()
    args = _parse_args(config.storage.default_channel)
    configure_logging(args.log_level)
    require(config, "ARENA_TOKEN", "ARENA_USER_SLUG", "GEMINI_API_KEY")

    print(BANNER)
    print("                 ANTI-PATTERN EXTRACTION")
    print(BANNER)
    print(f"\n📂 Target channel: {args.channel}")
    analyze_channel(
        args.channel,
        ArenaClient(config.arena),
        VisionModel(config.model),
        IndexStore(config.storage.index_dir),
        max_images=args.max_images,
        fetch_metadata=not args.no_metadata,
        delay=config.model.request_delay,
    )
    print(f"\n{BANNER}\n                    ✅ COMPLETE\n{BANNER}")


if __name__ == "__main__":
    main()
