"""
Image and text understanding through Gemini's OpenAI-compatible endpoint.

Model replies are free text expected to contain one JSON object. Decoding is
best effort and returns either ``Parsed`` or ``Unparseable``; callers route
the latter to their per-item skip path.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import requests
from openai import OpenAI

from .config import ModelSettings
from .models import TagSet
from .tag_taxonomy import build_tag_prompt

LOGGER = logging.getLogger(__name__)

_JSON_BLOB_RE = re.compile(r"\{[\s\S]*\}")
_DATA_URL_RE = re.compile(r"^data:(.+?);base64,(.+)$", re.DOTALL)

DEFAULT_ONE_LINER = "UI design"


@dataclass(frozen=True)
class ImageData:
    base64: str
    mime_type: str = "image/jpeg"

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


@dataclass(frozen=True)
class Parsed:
    data: Dict[str, Any]


@dataclass(frozen=True)
class Unparseable:
    raw_text: str
    reason: str


DecodeResult = Union[Parsed, Unparseable]


@dataclass(frozen=True)
class TagExtraction:
    tags: TagSet
    one_liner: str = DEFAULT_ONE_LINER


def decode_json_blob(text: Optional[str]) -> DecodeResult:
    """Pull the outermost ``{...}`` span out of a reply and parse it."""

    raw = text or ""
    match = _JSON_BLOB_RE.search(raw)
    if not match:
        return Unparseable(raw, "no JSON object in response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        return Unparseable(raw, f"invalid JSON: {exc.msg}")
    if not isinstance(data, dict):
        return Unparseable(raw, "JSON value is not an object")
    return Parsed(data)


def parse_data_url(value: str) -> ImageData:
    match = _DATA_URL_RE.match(value.strip())
    if not match:
        raise ValueError("Invalid image format")
    mime_type, payload = match.groups()
    return ImageData(base64=payload, mime_type=mime_type)


def coerce_image(value: str) -> ImageData:
    """Accept either a data URL or bare base64 (assumed JPEG)."""

    if value.startswith("data:"):
        return parse_data_url(value)
    return ImageData(base64=value.strip())


def download_image(url: str, timeout: float = 30.0) -> Optional[ImageData]:
    """Fetch an image for inlining; GIFs and failures give None."""

    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        LOGGER.info("Image download failed for %s: %s", url, exc)
        return None
    content_type = response.headers.get("content-type") or "image/jpeg"
    if "gif" in content_type:
        return None
    return ImageData(
        base64=base64.b64encode(response.content).decode("utf-8"),
        mime_type=content_type.split(";")[0].strip(),
    )


class VisionModel:
    """Thin wrapper around a chat completion call with an optional image."""

    def __init__(self, settings: ModelSettings, client: Optional[OpenAI] = None):
        if client is None:
            if not settings.api_key:
                raise ValueError("GEMINI_API_KEY must be set in environment")
            client = OpenAI(api_key=settings.api_key, base_url=settings.base_url)
        self.client = client
        self.settings = settings

    def generate(self, prompt: str, image: Optional[ImageData] = None) -> str:
        return self.generate_many(prompt, [image] if image is not None else [])

    def generate_many(self, prompt: str, images: Sequence[ImageData]) -> str:
        """One completion over several images followed by the prompt text."""
        content: List[Dict[str, Any]] = [
            {"type": "image_url", "image_url": {"url": image.data_url}} for image in images
        ]
        content.append({"type": "text", "text": prompt})
        response = self.client.chat.completions.create(
            model=self.settings.model,
            messages=[{"role": "user", "content": content}],
            max_tokens=self.settings.max_tokens,
        )
        return response.choices[0].message.content or ""

    def generate_json(self, prompt: str, image: Optional[ImageData] = None) -> DecodeResult:
        return decode_json_blob(self.generate(prompt, image))

    def extract_tags(self, image: ImageData) -> Union[TagExtraction, Unparseable]:
        result = self.generate_json(build_tag_prompt(), image)
        if isinstance(result, Unparseable):
            return result
        return tags_from_payload(result.data)


def tags_from_payload(data: Dict[str, Any]) -> TagExtraction:
    one_liner = data.get("one_liner")
    return TagExtraction(
        tags=TagSet.from_dict(data),
        one_liner=one_liner if isinstance(one_liner, str) and one_liner else DEFAULT_ONE_LINER,
    )
