"""Value objects shared by the matcher, classifier and batch jobs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from .tag_taxonomy import TAG_CATEGORIES


def _as_tags(raw: Any) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,) if raw.strip() else ()
    if isinstance(raw, (list, tuple)):
        return tuple(str(v) for v in raw if v is not None and str(v).strip())
    return ()


@dataclass(frozen=True)
class TagSet:
    """Sparse tags per category. Values outside the vocabulary are allowed."""

    component: Tuple[str, ...] = ()
    style: Tuple[str, ...] = ()
    context: Tuple[str, ...] = ()
    vibe: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "TagSet":
        if not raw:
            return cls()
        return cls(**{category: _as_tags(raw.get(category)) for category in TAG_CATEGORIES})

    def get(self, category: str) -> Tuple[str, ...]:
        return getattr(self, category)

    def to_dict(self) -> Dict[str, List[str]]:
        return {category: list(self.get(category)) for category in TAG_CATEGORIES}

    def all_tags(self) -> List[str]:
        tags: List[str] = []
        for category in TAG_CATEGORIES:
            tags.extend(self.get(category))
        return tags

    def is_empty(self) -> bool:
        return not self.all_tags()

    def union(self, other: "TagSet") -> "TagSet":
        merged = {}
        for category in TAG_CATEGORIES:
            values = list(self.get(category))
            for tag in other.get(category):
                if tag not in values:
                    values.append(tag)
            merged[category] = tuple(values)
        return TagSet(**merged)


@dataclass(frozen=True)
class Candidate:
    """One indexed block of a reference library."""

    id: int
    tags: TagSet
    title: Optional[str] = None
    arena_url: str = ""
    image_url: Optional[str] = None
    one_liner: str = ""
    indexed_at: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Candidate":
        return cls(
            id=int(raw["id"]),
            tags=TagSet.from_dict(raw.get("tags")),
            title=raw.get("title"),
            arena_url=raw.get("arena_url") or "",
            image_url=raw.get("image_url"),
            one_liner=raw.get("one_liner") or "",
            indexed_at=raw.get("indexed_at") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "arena_url": self.arena_url,
            "image_url": self.image_url,
            "tags": self.tags.to_dict(),
            "one_liner": self.one_liner,
            "indexed_at": self.indexed_at,
        }


@dataclass
class ChannelIndex:
    channel_slug: str
    channel_title: str
    indexed_at: str
    blocks: List[Candidate] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ChannelIndex":
        return cls(
            channel_slug=raw.get("channel_slug", ""),
            channel_title=raw.get("channel_title", ""),
            indexed_at=raw.get("indexed_at", ""),
            blocks=[Candidate.from_dict(b) for b in raw.get("blocks") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_slug": self.channel_slug,
            "channel_title": self.channel_title,
            "indexed_at": self.indexed_at,
            "blocks": [b.to_dict() for b in self.blocks],
        }

    def block_ids(self) -> Set[int]:
        return {b.id for b in self.blocks}


@dataclass(frozen=True)
class MatchResult:
    candidate: Candidate
    score: float
    matched: TagSet
    relevance_note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "block": self.candidate.to_dict(),
            "score": self.score,
            "matchedTags": self.matched.to_dict(),
            "relevanceNote": self.relevance_note,
        }


@dataclass(frozen=True)
class ClassificationRule:
    """Trigger table entry. Keywords fall back to the URL triggers."""

    category: str
    triggers: Tuple[str, ...] = ()
    keywords: Optional[Tuple[str, ...]] = None

    def text_keywords(self) -> Tuple[str, ...]:
        return self.triggers if self.keywords is None else self.keywords


@dataclass(frozen=True)
class ClassificationDecision:
    item_id: int
    destinations: Tuple[str, ...]
    reasoning: str
    suggested_label: Optional[str] = None

    @property
    def is_classified(self) -> bool:
        return bool(self.destinations)


@dataclass(frozen=True)
class ArenaChannel:
    id: int
    title: str
    slug: str
    length: int = 0
    status: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> "ArenaChannel":
        return cls(
            id=int(raw.get("id") or 0),
            title=raw.get("title") or "",
            slug=raw.get("slug") or "",
            length=int(raw.get("length") or 0),
            status=raw.get("status"),
            created_at=raw.get("created_at"),
        )


@dataclass(frozen=True)
class ArenaBlock:
    id: int
    block_class: str
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    source_url: Optional[str] = None
    source_title: Optional[str] = None
    provider_name: Optional[str] = None
    image_url: Optional[str] = None
    thumb_url: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> "ArenaBlock":
        source = raw.get("source") or {}
        provider = source.get("provider") or {}
        image = raw.get("image") or {}
        return cls(
            id=int(raw["id"]),
            block_class=raw.get("class") or "",
            title=raw.get("title"),
            description=raw.get("description"),
            content=raw.get("content"),
            source_url=source.get("url"),
            source_title=source.get("title"),
            provider_name=provider.get("name"),
            image_url=(image.get("display") or {}).get("url"),
            thumb_url=(image.get("thumb") or {}).get("url"),
        )

    @property
    def display_title(self) -> str:
        return self.title or self.source_title or "[Untitled]"

    @property
    def is_visual(self) -> bool:
        return self.block_class in ("Image", "Attachment")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "class": self.block_class,
            "title": self.title,
            "description": self.description,
            "content": self.content,
            "source": {"url": self.source_url, "title": self.source_title}
            if self.source_url or self.source_title
            else None,
            "image_url": self.image_url or self.thumb_url,
        }


class Destination(Enum):
    """Managed destination channels: key and Are.na title."""

    UI_UX = ("ui-ux", "UI/UX")
    WRITING = ("writing", "Writing")
    CODE = ("code", "Code")
    THINKING = ("thinking", "Frameworks")
    SKIPPED = ("skipped", "Classifier - Skipped")

    def __init__(self, key: str, title: str) -> None:
        self.key = key
        self.title = title

    @property
    def slug(self) -> str:
        return title_to_slug(self.title)

    @classmethod
    def categories(cls) -> List["Destination"]:
        return [d for d in cls if d is not cls.SKIPPED]

    @classmethod
    def lookup(cls, value: str) -> Optional["Destination"]:
        needle = value.strip().lower()
        for destination in cls:
            if needle in (destination.key, destination.title.lower()):
                return destination
        return None


@dataclass(frozen=True)
class CustomChannel:
    """A user-defined channel outside the managed set."""

    name: str

    @property
    def title(self) -> str:
        return self.name

    @property
    def slug(self) -> str:
        return title_to_slug(self.name)


Target = Union[Destination, CustomChannel]


def resolve_destination(value: str) -> Target:
    return Destination.lookup(value) or CustomChannel(value)


def title_to_slug(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def system_titles(destinations: Iterable[Destination] = tuple(Destination)) -> List[str]:
    return [d.title for d in destinations]
