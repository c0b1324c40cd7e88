from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

import pandas as pd


TAG_CATEGORIES: Tuple[str, ...] = ("component", "style", "context", "vibe")

CATEGORY_PROMPTS: Dict[str, str] = {
    "component": "what UI elements are shown",
    "style": "visual treatment",
    "context": "where would this be used",
    "vibe": "emotional quality",
}


@dataclass(frozen=True)
class TagDefinition:
    text: str
    category: str


def _component_tags() -> Iterable[TagDefinition]:
    values = (
        "hero", "navbar", "footer", "sidebar", "cards", "dashboard", "metrics",
        "charts", "form", "modal", "toast", "button", "cta", "pricing",
        "testimonials", "feature-grid", "bento", "gallery", "profile",
        "settings", "onboarding", "empty-state", "error-state", "loading",
        "search", "filters", "table", "list", "timeline", "calendar", "map",
    )
    for text in values:
        yield TagDefinition(text, "component")


def _style_tags() -> Iterable[TagDefinition]:
    values = (
        "dark-mode", "light-mode", "glassmorphism", "neumorphism", "brutalist",
        "minimal", "maximal", "rounded", "sharp", "gradient", "flat", "3d",
        "illustrated", "photographic", "geometric", "organic", "high-contrast",
        "muted", "neon", "pastel", "monochrome", "duotone",
    )
    for text in values:
        yield TagDefinition(text, "style")


def _context_tags() -> Iterable[TagDefinition]:
    values = (
        "landing-page", "saas", "mobile-app", "desktop-app", "marketing",
        "e-commerce", "fintech", "health", "productivity", "social", "media",
        "developer-tools", "b2b", "b2c", "enterprise", "startup", "portfolio",
        "blog", "docs",
    )
    for text in values:
        yield TagDefinition(text, "context")


def _vibe_tags() -> Iterable[TagDefinition]:
    values = (
        "playful", "serious", "premium", "budget", "trustworthy", "edgy",
        "calm", "energetic", "friendly", "professional", "futuristic", "retro",
        "warm", "cold", "confident", "humble", "bold", "subtle",
    )
    for text in values:
        yield TagDefinition(text, "vibe")


def iter_tag_definitions() -> List[TagDefinition]:
    defs: List[TagDefinition] = []
    for builder in (_component_tags, _style_tags, _context_tags, _vibe_tags):
        defs.extend(builder())
    return defs


def vocabulary() -> Dict[str, List[str]]:
    vocab: Dict[str, List[str]] = {category: [] for category in TAG_CATEGORIES}
    for definition in iter_tag_definitions():
        vocab[definition.category].append(definition.text)
    return vocab


def tag_dataframe() -> pd.DataFrame:
    rows = []
    for tag_id, definition in enumerate(iter_tag_definitions(), start=1):
        rows.append(
            {
                "tag_id": tag_id,
                "text": definition.text,
                "category": definition.category,
            }
        )
    return pd.DataFrame(rows)


def is_known_tag(category: str, value: str) -> bool:
    return value in vocabulary().get(category, [])


def build_tag_prompt(subject: str = "UI/UX screenshot") -> str:
    """Render the tagging instructions sent alongside each image."""

    sections = []
    for category, values in vocabulary().items():
        sections.append(
            f"### {category} ({CATEGORY_PROMPTS[category]})\nOptions: {', '.join(values)}"
        )
    categories = "\n\n".join(sections)
    return f"""You are a design librarian. Analyze this {subject} and output tags.

## Tag Categories

{categories}

## Rules
- Output 2-5 tags per category (only what clearly applies)
- Skip categories if uncertain
- Be specific over generic
- Output valid JSON only

## Output Format
{{
  "component": ["..."],
  "style": ["..."],
  "context": ["..."],
  "vibe": ["..."],
  "one_liner": "One sentence describing what this is"
}}"""
