from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

import pandas as pd

from .models import (
    ArenaBlock,
    ArenaChannel,
    ClassificationDecision,
    ClassificationRule,
    Destination,
)

LOGGER = logging.getLogger(__name__)

ALREADY_ORGANIZED = "Already organized in target channels"
NO_MATCH = "No classification match"
LABEL_TITLE_LIMIT = 60

DEFAULT_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(
        category="ui-ux",
        triggers=("dribbble.com", "behance.net", "mobbin.com", "figma.com", "land-book.com", "godly.website", "awwwards.com"),
        keywords=("ui design", "ux", "user interface", "dashboard", "landing page", "design system", "typography", "figma"),
    ),
    ClassificationRule(
        category="writing",
        triggers=("substack.com", "medium.com", "paulgraham.com", "newyorker.com", "theatlantic.com"),
        keywords=("essay", "writing", "newsletter", "storytelling", "copywriting", "prose"),
    ),
    ClassificationRule(
        category="code",
        triggers=("github.com", "stripe.com", "stackoverflow.com", "vercel.com", "npmjs.com", "pypi.org", "dev.to"),
        keywords=("github", "api", "javascript", "typescript", "python", "react", "programming", "open source"),
    ),
    ClassificationRule(
        category="thinking",
        triggers=("fs.blog", "lesswrong.com", "stratechery.com", "wikipedia.org"),
        keywords=("framework", "mental model", "strategy", "decision", "first principles", "heuristic"),
    ),
)


@dataclass
class OrganizeReport:
    total: int
    classified: int
    skipped: int
    results: List[Tuple[ArenaBlock, ClassificationDecision]] = field(default_factory=list)
    channels_to_create: List[str] = field(default_factory=list)


def extract_domain(url: Optional[str]) -> Optional[str]:
    """Hostname without a leading ``www.``; None when the URL has no host."""

    if not url:
        return None
    try:
        hostname = urlparse(url.strip()).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return hostname[4:] if hostname.startswith("www.") else hostname


def match_url(url: Optional[str], rules: Sequence[ClassificationRule]) -> List[str]:
    domain = extract_domain(url)
    if not domain:
        return []
    matches: List[str] = []
    for rule in rules:
        for trigger in rule.triggers:
            trigger = trigger.lower()
            if trigger in domain or domain in trigger:
                matches.append(rule.category)
                break
    return matches


def match_keywords(text: Optional[str], rules: Sequence[ClassificationRule]) -> List[str]:
    if not text:
        return []
    lower = text.lower()
    matches: List[str] = []
    for rule in rules:
        for keyword in rule.text_keywords():
            if keyword.lower() in lower:
                matches.append(rule.category)
                break
    return matches


def is_already_organized(
    channels: Iterable[ArenaChannel],
    targets: Sequence[Destination] = tuple(Destination.categories()),
) -> bool:
    target_titles = {t.title.lower() for t in targets}
    target_keys = [t.key for t in targets]
    for channel in channels:
        slug = channel.slug.lower()
        if channel.title.lower() in target_titles:
            return True
        if any(key in slug for key in target_keys):
            return True
    return False


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def suggest_label(block: ArenaBlock, min_description_length: int = 10) -> Optional[str]:
    if block.description and len(block.description.strip()) > min_description_length:
        return None

    parts: List[str] = []
    if block.provider_name:
        parts.append(f"[{block.provider_name}]")

    if block.block_class == "Link" and block.source_url:
        domain = extract_domain(block.source_url)
        if domain and not parts:
            parts.append(f"[{domain}]")
    elif block.block_class == "Text":
        parts.append("[Text]")
    elif block.block_class == "Image":
        parts.append("[Image]")

    if block.source_title and block.source_title != block.title:
        parts.append(_truncate(block.source_title, LABEL_TITLE_LIMIT))

    return " ".join(parts) if parts else None


def classify(
    block: ArenaBlock,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
    channels: Sequence[ArenaChannel] = (),
    already_organized: Callable[[Sequence[ArenaChannel]], bool] = is_already_organized,
    min_description_length: int = 10,
) -> ClassificationDecision:
    """Route a block to destination categories using URL and keyword rules."""

    if already_organized(channels):
        return ClassificationDecision(
            item_id=block.id, destinations=(), reasoning=ALREADY_ORGANIZED
        )

    destinations: List[str] = []
    reasons: List[str] = []

    def _collect(matches: List[str], reason: str) -> None:
        added = False
        for category in matches:
            if category not in destinations:
                destinations.append(category)
                added = True
        if added:
            reasons.append(reason)

    url_matches = match_url(block.source_url, rules)
    if url_matches:
        _collect(url_matches, f"URL pattern: {extract_domain(block.source_url)}")

    _collect(match_keywords(block.title, rules), "Title keyword match")
    _collect(match_keywords(block.description, rules), "Description keyword match")
    if block.block_class == "Text" and block.content:
        _collect(match_keywords(block.content, rules), "Content keyword match")
    _collect(match_keywords(block.source_title, rules), "Source title keyword match")

    return ClassificationDecision(
        item_id=block.id,
        destinations=tuple(destinations),
        reasoning="; ".join(reasons) if reasons else NO_MATCH,
        suggested_label=suggest_label(block, min_description_length),
    )


def classify_all(
    block_map: Mapping[int, Tuple[ArenaBlock, List[ArenaChannel]]],
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
    min_description_length: int = 10,
) -> List[Tuple[ArenaBlock, ClassificationDecision]]:
    results = []
    for block, channels in block_map.values():
        decision = classify(
            block, rules, channels, min_description_length=min_description_length
        )
        LOGGER.debug("Block %s -> %s (%s)", block.id, decision.destinations, decision.reasoning)
        results.append((block, decision))
    return results


def find_existing_channel(
    key: str, channels: Iterable[ArenaChannel]
) -> Optional[ArenaChannel]:
    destination = Destination.lookup(key)
    title = (destination.title if destination else key).lower()
    key_lower = key.lower()
    for channel in channels:
        slug = channel.slug.lower()
        if (
            channel.title.lower() == title
            or slug == key_lower
            or slug.replace("-", "") == key_lower.replace("-", "")
        ):
            return channel
    return None


def build_report(
    results: Sequence[Tuple[ArenaBlock, ClassificationDecision]],
    channels: Sequence[ArenaChannel],
) -> OrganizeReport:
    classified = [(b, d) for b, d in results if d.is_classified]
    needed: List[str] = []
    for _, decision in classified:
        for key in decision.destinations:
            if key not in needed:
                needed.append(key)
    to_create = [key for key in needed if find_existing_channel(key, channels) is None]
    return OrganizeReport(
        total=len(results),
        classified=len(classified),
        skipped=len(results) - len(classified),
        results=classified,
        channels_to_create=to_create,
    )


def report_frame(report: OrganizeReport) -> pd.DataFrame:
    """One row per (destination, block) pair of the classified results."""

    rows = []
    for block, decision in report.results:
        for key in decision.destinations:
            rows.append(
                {
                    "destination": key,
                    "block_id": block.id,
                    "title": block.display_title,
                    "reasoning": decision.reasoning,
                    "suggested_label": decision.suggested_label,
                }
            )
    columns = ["destination", "block_id", "title", "reasoning", "suggested_label"]
    return pd.DataFrame(rows, columns=columns)


def destination_counts(report: OrganizeReport) -> Dict[str, int]:
    frame = report_frame(report)
    if frame.empty:
        return {}
    counts = frame.groupby("destination", sort=False)["block_id"].count()
    return {str(k): int(v) for k, v in counts.items()}
