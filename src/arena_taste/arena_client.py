from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from .config import ArenaSettings
from .models import ArenaBlock, ArenaChannel, Destination, system_titles

LOGGER = logging.getLogger(__name__)


class ArenaAPIError(RuntimeError):
    """Non-2xx response from the Are.na API."""

    def __init__(self, status: int, message: str, body: str = ""):
        super().__init__(f"Are.na API error: {status} {message} - {body[:100]}")
        self.status = status
        self.body = body


class ArenaClient:
    """Are.na REST wrapper with bearer auth and page/per pagination."""

    def __init__(self, settings: ArenaSettings, session: Optional[requests.Session] = None):
        if not settings.token or not settings.user_slug:
            raise ValueError("ARENA_TOKEN and ARENA_USER_SLUG must be set in environment")
        self.settings = settings
        self.user_slug = settings.user_slug
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {settings.token}",
                "Content-Type": "application/json",
            }
        )

    def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        url = f"{self.settings.api_base}{endpoint}"
        response = self.session.request(method, url, timeout=self.settings.timeout, **kwargs)
        if not response.ok:
            raise ArenaAPIError(response.status_code, response.reason or "", response.text or "")
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    def _pause(self) -> None:
        if self.settings.request_delay > 0:
            time.sleep(self.settings.request_delay)

    def _paginate(self, endpoint: str, key: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        per = self.settings.per_page
        page = 1
        while True:
            data = self._request("GET", endpoint, params={"page": page, "per": per})
            batch = data if isinstance(data, list) else (data.get(key) or [])
            items.extend(batch)
            if len(batch) < per:
                break
            page += 1
        return items

    # ==================== CHANNELS ====================

    def get_channels(self) -> List[ArenaChannel]:
        raw = self._paginate(f"/users/{self.user_slug}/channels", "channels")
        channels = [ArenaChannel.from_api(c) for c in raw]
        LOGGER.info("Found %d channels", len(channels))
        return channels

    def get_channel(self, slug: str) -> Optional[ArenaChannel]:
        try:
            return ArenaChannel.from_api(self._request("GET", f"/channels/{slug}"))
        except ArenaAPIError as exc:
            if exc.status == 404:
                return None
            raise

    def find_channel_by_title(self, title: str) -> Optional[ArenaChannel]:
        wanted = title.lower()
        for channel in self.get_channels():
            if channel.title.lower() == wanted:
                return channel
        return None

    def create_channel(self, title: str, status: str = "private") -> ArenaChannel:
        data = self._request("POST", "/channels", json={"title": title, "status": status})
        return ArenaChannel.from_api(data)

    def get_or_create_channel(self, title: str, status: str = "private") -> ArenaChannel:
        existing = self.find_channel_by_title(title)
        if existing is not None:
            return existing
        return self.create_channel(title, status)

    def get_channel_blocks(self, slug: str) -> List[ArenaBlock]:
        raw = self._paginate(f"/channels/{slug}/contents", "contents")
        return [ArenaBlock.from_api(b) for b in raw if b.get("class") != "Channel"]

    # ==================== CONNECTIONS ====================

    def connect_block(self, block_id: int, channel_slug: str) -> None:
        self._request(
            "POST",
            f"/channels/{channel_slug}/connections",
            json={"connectable_type": "Block", "connectable_id": block_id},
        )

    def disconnect_block(self, block_id: int, channel_slug: str) -> None:
        self._request("DELETE", f"/channels/{channel_slug}/blocks/{block_id}")

    # ==================== BLOCKS ====================

    def get_block(self, block_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/blocks/{block_id}")

    def update_block_description(self, block_id: int, description: str) -> None:
        self._request("PUT", f"/blocks/{block_id}", json={"description": description})

    def delete_block(self, block_id: int) -> int:
        """Disconnect a block from every channel it lives in.

        Are.na has no hard delete for blocks; failures on individual
        connections are logged and do not stop the others.
        """

        block = self.get_block(block_id)
        connections = block.get("connections") or []
        for connection in connections:
            slug = connection.get("slug")
            if not slug:
                continue
            try:
                self.disconnect_block(block_id, slug)
            except ArenaAPIError as exc:
                LOGGER.warning("Failed to disconnect %s from %s: %s", block_id, slug, exc)
        return len(connections)

    def get_all_blocks(
        self, channels: Sequence[ArenaChannel]
    ) -> Dict[int, Tuple[ArenaBlock, List[ArenaChannel]]]:
        """Blocks across channels, deduplicated by id with every channel they sit in."""

        block_map: Dict[int, Tuple[ArenaBlock, List[ArenaChannel]]] = {}
        for channel in channels:
            print(f"   📖 Reading: {channel.title} ({channel.length} items)")
            try:
                blocks = self.get_channel_blocks(channel.slug)
            except ArenaAPIError as exc:
                LOGGER.error("Error fetching blocks for %s: %s", channel.slug, exc)
                continue
            for block in blocks:
                if block.id in block_map:
                    block_map[block.id][1].append(channel)
                else:
                    block_map[block.id] = (block, [channel])
            self._pause()
        return block_map

    def get_unclassified_blocks(
        self, system_channel_titles: Sequence[str] = tuple(system_titles())
    ) -> Tuple[List[Tuple[ArenaBlock, List[str]]], List[ArenaChannel]]:
        """Blocks not yet connected to any managed channel, with their source titles."""

        channels = self.get_channels()
        system_lower = {t.lower() for t in system_channel_titles}
        system_channels = [c for c in channels if c.title.lower() in system_lower]
        content_channels = [
            c for c in channels if c.title.lower() not in system_lower and c.length > 0
        ]

        classified_ids = set()
        for channel in system_channels:
            if channel.length == 0:
                continue
            classified_ids.update(b.id for b in self.get_channel_blocks(channel.slug))
            self._pause()

        found: Dict[int, Tuple[ArenaBlock, List[str]]] = {}
        for channel in content_channels:
            for block in self.get_channel_blocks(channel.slug):
                if block.id in classified_ids:
                    continue
                found.setdefault(block.id, (block, []))[1].append(channel.title)
            self._pause()
        return list(found.values()), channels

    def resolve_channel_slug(self, target) -> Optional[str]:
        """Slug of the existing channel for a Destination or CustomChannel."""

        channel = self.find_channel_by_title(target.title)
        return channel.slug if channel else None

    def skipped_channel(self) -> ArenaChannel:
        return self.get_or_create_channel(Destination.SKIPPED.title)
