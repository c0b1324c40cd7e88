from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

import requests
from bs4 import BeautifulSoup

from .classifier import extract_domain
from .models import ArenaBlock

LOGGER = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; ArenaOrganizer/1.0)"

TYPE_TAGS = {"Image": "[Image]", "Text": "[Text]", "Media": "[Media]"}


@dataclass(frozen=True)
class PageMetadata:
    title: Optional[str] = None
    description: Optional[str] = None


def _meta_content(soup: BeautifulSoup, **attrs) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


def parse_page_metadata(page: str) -> PageMetadata:
    soup = BeautifulSoup(page, "html.parser")
    title = _meta_content(soup, property="og:title")
    if title is None and soup.title and soup.title.string:
        title = soup.title.string.strip() or None
    description = _meta_content(soup, property="og:description") or _meta_content(
        soup, name="description"
    )
    return PageMetadata(title=title, description=description)


def fetch_page_metadata(url: str, timeout: float = 5.0) -> Optional[PageMetadata]:
    try:
        response = requests.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
    except requests.RequestException as exc:
        LOGGER.info("Metadata fetch failed for %s: %s", url, exc)
        return None
    return parse_page_metadata(response.text)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def generate_block_label(
    block: ArenaBlock,
    metadata: Optional[PageMetadata] = None,
    min_description_length: int = 20,
) -> Optional[str]:
    """Type tag plus the page description (or title); None if nothing to add."""

    if block.description and len(block.description.strip()) > min_description_length:
        return None

    parts = []
    if block.block_class == "Link":
        if block.source_url:
            domain = extract_domain(block.source_url)
            parts.append(f"[{domain}]" if domain else "[Link]")
    elif block.block_class in TYPE_TAGS:
        parts.append(TYPE_TAGS[block.block_class])

    if metadata and metadata.description:
        desc = _truncate(metadata.description, 100)
        if desc.lower() != (block.title or "").lower():
            parts.append(desc)
    elif metadata and metadata.title and metadata.title != block.title:
        parts.append(_truncate(metadata.title, 80))

    return " — ".join(parts) if len(parts) > 1 else None


def generate_labels(
    blocks: Iterable[ArenaBlock],
    fetch_metadata: bool = False,
    min_description_length: int = 20,
    delay: float = 0.3,
    timeout: float = 5.0,
) -> Dict[int, str]:
    labels: Dict[int, str] = {}
    for block in blocks:
        if block.description and len(block.description.strip()) > min_description_length:
            continue
        metadata = None
        if fetch_metadata and block.block_class == "Link" and block.source_url:
            print(f"   🔍 Fetching metadata: {block.source_url[:50]}...")
            metadata = fetch_page_metadata(block.source_url, timeout=timeout)
            time.sleep(delay)
        label = generate_block_label(block, metadata, min_description_length)
        if label:
            labels[block.id] = label
    return labels
