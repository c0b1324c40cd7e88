"""
Style guide aggregation over per-screenshot style extractions.

Each extraction is the nested JSON the vision model returns for one block.
Enumerated fields are reduced to their most common value; the corner radius
is averaged. Motion is never observable from a still image, so it is filled
with a fixed default and its confidence only reflects whether anti-pattern
rules were supplied.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

COLOR_KEYS: Tuple[str, ...] = (
    "background_primary",
    "background_secondary",
    "background_card",
    "text_primary",
    "text_secondary",
    "text_muted",
    "accent_primary",
    "accent_secondary",
    "success",
    "warning",
    "error",
)

ENUM_FIELDS: Dict[str, Tuple[str, ...]] = {
    "typography": ("family_vibe", "heading_weight", "body_weight", "size_hierarchy", "letter_spacing"),
    "spacing": ("density", "card_padding", "element_gap", "section_margin"),
    "elevation": ("shadow_presence", "shadow_color", "layering"),
    "borders": ("radius_category", "border_usage", "divider_style"),
    "icons": ("style", "corners"),
}

CONFIDENCE_FAMILIES: Tuple[str, ...] = ("colors", "typography", "spacing", "elevation", "borders")

DEFAULT_MOTION: Dict[str, Any] = {
    "expected": True,
    "duration_ms": 200,
    "easing": "ease-out",
    "hover_effect": "lift",
}

HIGH_CONFIDENCE_MIN = 15
MEDIUM_CONFIDENCE_MIN = 8
MIN_CONTEXT_SAMPLES = 3

CONFIDENCE_NOTES = {
    "high": "Strong signal from many samples",
    "medium": "Moderate signal, more samples would help",
    "low": "Limited samples, treat as directional",
}
MOTION_NOTE = "Inferred from anti-rules, not direct observation"

_ANTI_PATTERN_RE = re.compile(r"^### ❌ (.+)$", re.MULTILINE)
_HIGH_CONFIDENCE_RE = re.compile(r"^### ❌ (.+)\n\*\*Confidence:\*\* high", re.MULTILINE | re.IGNORECASE)

STYLE_EXTRACTION_PROMPT = """You are a senior UI designer analyzing a screenshot to extract precise styling details. Be specific and concrete.

Analyze this UI and extract the following. Output ONLY valid JSON.

{
  "colors": {
    "background_primary": "#hex (main page background)",
    "background_secondary": "#hex (secondary sections)",
    "background_card": "#hex (card/container background)",
    "text_primary": "#hex (main text)",
    "text_secondary": "#hex (secondary text)",
    "text_muted": "#hex (disabled/placeholder)",
    "accent_primary": "#hex (buttons, links, CTAs)",
    "accent_secondary": "#hex (secondary actions)",
    "success": "#hex (positive states)",
    "warning": "#hex (warning states)",
    "error": "#hex (error states)"
  },
  "typography": {
    "family_vibe": "geometric-sans|humanist-sans|neo-grotesque|serif|mono|mixed",
    "heading_weight": "300|400|500|600|700|800",
    "body_weight": "300|400|500",
    "size_hierarchy": "subtle|moderate|dramatic (how much bigger are headings)",
    "letter_spacing": "tight|normal|tracked"
  },
  "spacing": {
    "density": "compact|balanced|airy",
    "card_padding": "tight|medium|generous",
    "element_gap": "tight|medium|generous",
    "section_margin": "tight|medium|generous"
  },
  "elevation": {
    "shadow_presence": "none|subtle|soft|pronounced",
    "shadow_color": "neutral|tinted|colored",
    "layering": "flat|subtle-depth|stacked"
  },
  "borders": {
    "radius_px": 0-24 (estimate in pixels),
    "radius_category": "sharp|slightly-rounded|rounded|pill",
    "border_usage": "none|subtle|prominent",
    "divider_style": "none|light|medium"
  },
  "icons": {
    "style": "outlined|filled|duotone|mixed",
    "corners": "rounded|sharp"
  }
}

Rules:
- Extract actual hex values you see, not guesses
- If a color isn't visible, use "N/A"
- Be precise about radius - estimate actual pixels
- Consider the overall impression, not just one element"""


@dataclass(frozen=True)
class StyleObservation:
    block_id: int
    context: Tuple[str, ...]
    styles: Mapping[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"block_id": self.block_id, "context": list(self.context), "styles": dict(self.styles)}


@dataclass
class AggregatedStyleGuide:
    common: Dict[str, Dict[str, Any]]
    contexts: Dict[str, Dict[str, Dict[str, Any]]] = field(default_factory=dict)
    anti_patterns: List[str] = field(default_factory=list)
    confidence_notes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    raw_extractions: List[StyleObservation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "common": self.common,
            "contexts": self.contexts,
            "anti_patterns": self.anti_patterns,
            "confidence_notes": self.confidence_notes,
            "raw_extractions": [o.to_dict() for o in self.raw_extractions],
        }


def most_common(values: Sequence[Hashable]) -> Optional[Hashable]:
    """Plurality value; on ties the value seen first wins."""

    if not values:
        return None
    counts: Dict[Hashable, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    best, best_count = None, 0
    for value, count in counts.items():
        if count > best_count:
            best, best_count = value, count
    return best


def average_number(values: Sequence[float]) -> int:
    """Mean rounded half-up; 0 for no values."""

    if len(values) == 0:
        return 0
    return int(np.floor(np.mean(values) + 0.5))


def _section(styles: Mapping[str, Any], family: str) -> Mapping[str, Any]:
    section = styles.get(family) if isinstance(styles, Mapping) else None
    return section if isinstance(section, Mapping) else {}


def _observed(extractions: Iterable[Mapping[str, Any]], family: str, key: str) -> List[Hashable]:
    values = []
    for styles in extractions:
        value = _section(styles, family).get(key)
        if isinstance(value, (str, int, float)) and not isinstance(value, bool) and value != "":
            values.append(value)
    return values


def _aggregate_colors(extractions: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key in COLOR_KEYS:
        values = [v for v in _observed(extractions, "colors", key) if v != "N/A"]
        if values:
            result[key] = most_common(values)
    return result


def _aggregate_enums(extractions: Sequence[Mapping[str, Any]], family: str) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key in ENUM_FIELDS[family]:
        value = most_common(_observed(extractions, family, key))
        if value is not None:
            result[key] = value
    return result


def _aggregate_borders(extractions: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    radii = [
        v
        for v in (_section(s, "borders").get("radius_px") for s in extractions)
        if isinstance(v, (int, float)) and not isinstance(v, bool)
    ]
    result: Dict[str, Any] = {"radius_px": average_number(radii)}
    result.update(_aggregate_enums(extractions, "borders"))
    return result


def aggregate_all(extractions: Sequence[Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
    return {
        "colors": _aggregate_colors(extractions),
        "typography": _aggregate_enums(extractions, "typography"),
        "spacing": _aggregate_enums(extractions, "spacing"),
        "elevation": _aggregate_enums(extractions, "elevation"),
        "borders": _aggregate_borders(extractions),
        "icons": _aggregate_enums(extractions, "icons"),
        "motion": dict(DEFAULT_MOTION),
    }


def confidence_tier(sample_size: int) -> str:
    if sample_size >= HIGH_CONFIDENCE_MIN:
        return "high"
    if sample_size >= MEDIUM_CONFIDENCE_MIN:
        return "medium"
    return "low"


def calculate_confidence(sample_size: int) -> Dict[str, Any]:
    tier = confidence_tier(sample_size)
    return {"confidence": tier, "sample_size": sample_size, "note": CONFIDENCE_NOTES[tier]}


def group_by_context(observations: Sequence[StyleObservation]) -> Dict[str, List[Mapping[str, Any]]]:
    groups: Dict[str, List[Mapping[str, Any]]] = {}
    for observation in observations:
        for ctx in observation.context:
            groups.setdefault(ctx, []).append(observation.styles)
    return groups


def aggregate(
    observations: Sequence[StyleObservation],
    anti_patterns: Sequence[str] = (),
) -> AggregatedStyleGuide:
    all_styles = [o.styles for o in observations]
    common = aggregate_all(all_styles)

    contexts = {
        ctx: aggregate_all(styles)
        for ctx, styles in group_by_context(observations).items()
        if len(styles) >= MIN_CONTEXT_SAMPLES
    }

    notes = {family: calculate_confidence(len(all_styles)) for family in CONFIDENCE_FAMILIES}
    notes["motion"] = {
        "confidence": "medium" if anti_patterns else "low",
        "sample_size": len(anti_patterns),
        "note": MOTION_NOTE,
    }

    return AggregatedStyleGuide(
        common=common,
        contexts=contexts,
        anti_patterns=list(anti_patterns),
        confidence_notes=notes,
        raw_extractions=list(observations),
    )


def parse_anti_patterns(markdown: str, high_confidence_only: bool = False) -> List[str]:
    pattern = _HIGH_CONFIDENCE_RE if high_confidence_only else _ANTI_PATTERN_RE
    return [m.strip() for m in pattern.findall(markdown)]
