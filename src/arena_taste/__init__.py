"""
Taste extraction on top of the Are.na API.

The package provides utilities for:
    * tagging screenshots against a fixed design vocabulary and ranking an
      indexed channel by weighted tag overlap,
    * sorting saved blocks into topical channels with URL and keyword rules,
    * aggregating per-screenshot style observations into a style guide,
    * a small HTTP API for matching and manual triage.

Indexes and style guides are plain JSON files under ``taste-profiles/``.
"""

from __future__ import annotations

from .classifier import classify
from .matching import score, top_matches
from .styles import aggregate

__all__ = ["aggregate", "classify", "score", "top_matches"]
