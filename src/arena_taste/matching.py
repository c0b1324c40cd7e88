"""
Reference matching: weighted tag overlap between a query and an index.

Scores are not normalised by tag-set size, so a candidate carrying many tags
in a heavy category can outrank a tighter but smaller match.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import Candidate, MatchResult, TagSet
from .tag_taxonomy import TAG_CATEGORIES

LOGGER = logging.getLogger(__name__)

TAG_WEIGHTS: Dict[str, float] = {
    "component": 3,
    "context": 2,
    "style": 1.5,
    "vibe": 1,
}

DEFAULT_LIMIT = 6
MULTI_IMAGE_LIMIT = 8

EXPLANATION_PROMPT_TEMPLATE = """You are helping a designer understand why a reference image matches their work-in-progress.

Given:
- What they're building: "{query_description}"
- Reference description: "{match_description}"
- Overlapping qualities: {matched_tags}

Write ONE short sentence (max 12 words) explaining why this reference is relevant.

Rules:
- Be specific about what's similar (layout, spacing, visual treatment, etc.)
- Avoid generic phrases like "similar design" or "matches well"
- Focus on actionable visual qualities they could borrow
- Don't mention the tag names directly, describe what they mean visually

Output ONLY the explanation sentence, nothing else."""


def score(query: TagSet, candidate: TagSet) -> Tuple[float, TagSet]:
    total = 0.0
    matched: Dict[str, Tuple[str, ...]] = {}
    for category in TAG_CATEGORIES:
        query_set = set(query.get(category))
        hits = tuple(tag for tag in candidate.get(category) if tag in query_set)
        total += TAG_WEIGHTS[category] * len(hits)
        matched[category] = hits
    return total, TagSet(**matched)


def relevance_note(matched: TagSet) -> str:
    parts: List[str] = []
    if matched.component:
        parts.append(f"Shares {', '.join(matched.component)} components")
    if matched.style:
        parts.append(f"similar {', '.join(matched.style)} style")
    if matched.context:
        parts.append(f"same {'/'.join(matched.context)} context")
    if matched.vibe:
        parts.append(f"{', '.join(matched.vibe)} vibe")
    return "; ".join(parts) or "General relevance"


def top_matches(
    query: TagSet,
    candidates: Iterable[Candidate],
    limit: int = DEFAULT_LIMIT,
) -> List[MatchResult]:
    """Rank candidates by overlap score; zero-overlap candidates are dropped.

    Equal scores keep catalog order (``sorted`` is stable).
    """

    scored: List[MatchResult] = []
    for candidate in candidates:
        value, matched = score(query, candidate.tags)
        if value > 0:
            scored.append(
                MatchResult(
                    candidate=candidate,
                    score=value,
                    matched=matched,
                    relevance_note=relevance_note(matched),
                )
            )
    scored = sorted(scored, key=lambda r: r.score, reverse=True)
    return scored[: max(limit, 0)]


def merge_tag_sets(tag_sets: Iterable[TagSet]) -> TagSet:
    merged = TagSet()
    for tags in tag_sets:
        merged = merged.union(tags)
    return merged


def merge_matches(
    result_lists: Iterable[Sequence[MatchResult]],
    limit: int = MULTI_IMAGE_LIMIT,
) -> List[MatchResult]:
    """Combine per-image results, keeping each candidate's best score."""

    best: Dict[int, MatchResult] = {}
    for results in result_lists:
        for result in results:
            existing = best.get(result.candidate.id)
            if existing is None or result.score > existing.score:
                best[result.candidate.id] = result
    combined = sorted(best.values(), key=lambda r: r.score, reverse=True)
    return combined[: max(limit, 0)]


def fallback_explanation(matched: TagSet) -> str:
    tags = matched.all_tags()
    if tags:
        return f"Similar {', '.join(tags[:3])} approach"
    return "Related visual reference"


def explain_match(model, query_one_liner: str, result: MatchResult) -> str:
    """Ask the text model for a one-line explanation of a match."""

    prompt = EXPLANATION_PROMPT_TEMPLATE.format(
        query_description=query_one_liner,
        match_description=result.candidate.one_liner,
        matched_tags=", ".join(result.matched.all_tags()),
    )
    try:
        text = model.generate(prompt)
    except Exception as exc:
        LOGGER.warning("Explanation failed for block %s: %s", result.candidate.id, exc)
        return fallback_explanation(result.matched)
    explanation = text.strip().strip("\"'")
    return explanation or fallback_explanation(result.matched)


def with_explanations(
    model, query_one_liner: str, results: Sequence[MatchResult]
) -> List[MatchResult]:
    explained: List[MatchResult] = []
    for result in results:
        note: Optional[str] = explain_match(model, query_one_liner, result)
        explained.append(
            MatchResult(
                candidate=result.candidate,
                score=result.score,
                matched=result.matched,
                relevance_note=note,
            )
        )
    return explained
