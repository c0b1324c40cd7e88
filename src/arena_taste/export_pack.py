"""
Reference pack export.

Bundles the chosen matches into a zip: each reference image plus a short
``design-spec.md`` that ranks them, lists what is distinctive about each and
closes with the channel's style guide summary and high-confidence anti-rules.
"""

from __future__ import annotations

import base64
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from zipfile import ZIP_DEFLATED, ZipFile

from openai import OpenAIError

from .matching import relevance_note, score
from .models import ChannelIndex, MatchResult, TagSet
from .vision import ImageData, Unparseable, VisionModel, download_image

LOGGER = logging.getLogger(__name__)

MAX_REFERENCES = 4
SPEC_FILE = "design-spec.md"

_EXTENSION_RE = re.compile(r"\.(jpg|jpeg|png|webp|gif)", re.IGNORECASE)
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")

PRIORITY_LABELS = ("PRIMARY (match this 80%)", "SECONDARY")

DISTINCTIVE_FEATURES_PROMPT = """You are a design systems expert. Look at this UI reference and say what makes it DISTINCTIVE.

Stick to concrete details someone could replicate:
1. what_stands_out: one sentence on the most unusual visual element
2. specific_values: 3-5 CSS-like values you can see (radius in px, gaps in px, shadow treatment, notable hex colours, type weight or size relationships)
3. borrow_this: one specific technique worth borrowing

Respond with JSON only:
{
  "what_stands_out": "...",
  "specific_values": ["radius ~16px", "card gap 12px", "no shadows, depth from borders only"],
  "borrow_this": "..."
}"""


@dataclass(frozen=True)
class DistinctiveFeatures:
    what_stands_out: str = ""
    specific_values: List[str] = field(default_factory=list)
    borrow_this: str = ""

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "DistinctiveFeatures":
        values = data.get("specific_values")
        if isinstance(values, str):
            values = [values]
        return cls(
            what_stands_out=str(data.get("what_stands_out") or "").strip(),
            specific_values=[str(v).strip() for v in values or [] if str(v).strip()],
            borrow_this=str(data.get("borrow_this") or "").strip(),
        )


@dataclass
class ReferencePack:
    archive: bytes
    spec: str
    filenames: List[str]


def sanitize_filename(name: str) -> str:
    return _NON_SLUG_RE.sub("-", name.lower()).strip("-")[:30]


def image_extension(url: Optional[str]) -> str:
    match = _EXTENSION_RE.search(url or "")
    return match.group(1).lower() if match else "png"


def reference_filename(position: int, result: MatchResult) -> str:
    candidate = result.candidate
    stem = sanitize_filename(candidate.one_liner or candidate.title or "") or str(candidate.id)
    return f"ref-{position}-{stem}.{image_extension(candidate.image_url)}"


def select_references(
    index: ChannelIndex,
    block_ids: Sequence[int],
    query: TagSet,
    limit: int = MAX_REFERENCES,
) -> List[MatchResult]:
    """Re-score the requested blocks against the query, keeping request order."""

    by_id = {candidate.id: candidate for candidate in index.blocks}
    results: List[MatchResult] = []
    seen = set()
    for block_id in block_ids:
        candidate = by_id.get(block_id)
        if candidate is None or block_id in seen:
            continue
        seen.add(block_id)
        total, matched = score(query, candidate.tags)
        results.append(MatchResult(candidate, total, matched, relevance_note(matched)))
        if len(results) >= limit:
            break
    return results


def analyze_features(model: VisionModel, image: ImageData) -> Optional[DistinctiveFeatures]:
    try:
        result = model.generate_json(DISTINCTIVE_FEATURES_PROMPT, image)
    except OpenAIError as exc:
        LOGGER.warning("Feature analysis failed: %s", exc)
        return None
    if isinstance(result, Unparseable):
        LOGGER.info("Unparseable feature reply: %s", result.reason)
        return None
    return DistinctiveFeatures.from_payload(result.data)


def _style_summary(style_guide: Optional[Mapping[str, Any]]) -> List[str]:
    if not style_guide:
        return []
    common = style_guide.get("common") or {}
    colors = common.get("colors") or {}
    borders = common.get("borders") or {}
    spacing = common.get("spacing") or {}
    elevation = common.get("elevation") or {}
    typography = common.get("typography") or {}

    parts = []
    if colors.get("background_primary"):
        parts.append(f"background {colors['background_primary']}")
    if colors.get("accent_primary"):
        parts.append(f"accent {colors['accent_primary']}")
    if borders.get("radius_px"):
        category = f" ({borders['radius_category']})" if borders.get("radius_category") else ""
        parts.append(f"radius {borders['radius_px']}px{category}")
    if spacing.get("density"):
        parts.append(f"{spacing['density']} spacing")
    if elevation.get("shadow_presence"):
        parts.append(f"shadows: {elevation['shadow_presence']}")
    if typography.get("family_vibe"):
        parts.append(f"type: {typography['family_vibe']}")
    return parts


def build_design_spec(
    references: Sequence[MatchResult],
    query: TagSet,
    style_guide: Optional[Mapping[str, Any]] = None,
    anti_patterns: Sequence[str] = (),
    features: Optional[Mapping[int, DistinctiveFeatures]] = None,
) -> str:
    features = features or {}
    tags = query.all_tags()[:6]
    lines = [f"## Reference Images for: {', '.join(tags)}" if tags else "## Reference Images", ""]

    for position, result in enumerate(references, 1):
        priority = PRIORITY_LABELS[position - 1] if position <= len(PRIORITY_LABELS) else "CONTEXT"
        lines.append(f"### {reference_filename(position, result)} [{priority}]")
        lines.append(result.candidate.one_liner or result.candidate.title or "")
        detail = features.get(result.candidate.id)
        if detail is not None:
            if detail.specific_values:
                lines += ["", "**Key details:**"]
                lines += [f"- {value}" for value in detail.specific_values]
            if detail.borrow_this:
                lines += ["", f"**Borrow:** {detail.borrow_this}"]
        lines.append("")

    summary = _style_summary(style_guide)
    if summary or anti_patterns:
        lines += ["---", ""]
    if summary:
        lines.append(f"**Style guide:** {' · '.join(summary)}")
    if anti_patterns:
        lines.append(f"**Avoid:** {' · '.join(anti_patterns)}")
    return "\n".join(lines).rstrip() + "\n"


def build_reference_pack(
    references: Sequence[MatchResult],
    query: TagSet,
    model: Optional[VisionModel] = None,
    style_guide: Optional[Mapping[str, Any]] = None,
    anti_patterns: Sequence[str] = (),
    fetch: Optional[Callable[[str], Optional[ImageData]]] = None,
) -> ReferencePack:
    """Download each reference, optionally describe it, and zip everything.

    References whose image cannot be fetched stay in the spec but have no
    file in the archive. Feature analysis failures are logged and skipped.
    """

    fetch = fetch or download_image
    buffer = io.BytesIO()
    filenames: List[str] = []
    features: Dict[int, DistinctiveFeatures] = {}

    with ZipFile(buffer, "w", ZIP_DEFLATED) as archive:
        for position, result in enumerate(references, 1):
            url = result.candidate.image_url
            image = fetch(url) if url else None
            if image is None:
                LOGGER.info("No image for reference %s", result.candidate.id)
                continue
            name = reference_filename(position, result)
            archive.writestr(name, base64.b64decode(image.base64))
            filenames.append(name)
            if model is not None:
                detail = analyze_features(model, image)
                if detail is not None:
                    features[result.candidate.id] = detail

        spec = build_design_spec(references, query, style_guide, anti_patterns, features)
        archive.writestr(SPEC_FILE, spec)

    return ReferencePack(archive=buffer.getvalue(), spec=spec, filenames=filenames)
