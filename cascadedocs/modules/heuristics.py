"""Deterministic module suggestions for files the AI has not placed yet."""

from __future__ import annotations

import os
import re
from collections import Counter, defaultdict
from pathlib import PurePosixPath
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from ..stores.modules import slugify
from .mapping import GENERIC_SEGMENTS

MIN_GROUP_SIZE = 3

CONCEPT_KEYWORDS: Mapping[str, Tuple[str, ...]] = {
    "authentication": ("auth", "login", "logout", "session", "token"),
    "authorization": ("permission", "role", "policy", "gate", "ability"),
    "billing": ("payment", "invoice", "subscription", "charge", "stripe"),
    "notification": ("notify", "alert", "email", "sms", "push"),
    "reporting": ("report", "analytics", "metrics", "statistics"),
    "integration": ("api", "webhook", "external", "third-party"),
    "caching": ("cache", "redis", "memcached"),
    "search": ("search", "filter", "query", "elastic"),
}

_WORD_SPLIT = re.compile(r"(?=[A-Z])|_|-")


def suggest_potential_modules(
    unassigned: Sequence[str], *, min_group_size: int = MIN_GROUP_SIZE
) -> List[Dict[str, Any]]:
    """Group unassigned files by directory and by shared concept, best first."""
    suggestions: List[Dict[str, Any]] = []

    by_directory: Dict[str, List[str]] = defaultdict(list)
    for path in unassigned:
        by_directory[str(PurePosixPath(path).parent)].append(path)
    for directory, files in sorted(by_directory.items()):
        if len(files) < min_group_size:
            continue
        suggestions.append(
            {
                "suggested_name": suggest_module_name(directory, files),
                "file_count": len(files),
                "files": sorted(files),
                "confidence": suggestion_confidence(files, conceptual=False),
                "reason": f"Files located in same directory: {directory}",
            }
        )

    for concept, keywords in CONCEPT_KEYWORDS.items():
        files = [path for path in unassigned if any(key in path.lower() for key in keywords)]
        if len(files) < min_group_size:
            continue
        suggestions.append(
            {
                "suggested_name": slugify(concept),
                "file_count": len(files),
                "files": sorted(files),
                "confidence": suggestion_confidence(files, conceptual=True),
                "reason": f"Files share common concept: {concept}",
            }
        )

    suggestions.sort(key=lambda item: (-item["confidence"], item["suggested_name"]))
    return suggestions


def suggest_module_name(directory: str, files: Sequence[str]) -> str:
    meaningful = [part for part in PurePosixPath(directory).parts if part.lower() not in GENERIC_SEGMENTS]
    if meaningful and meaningful != ["."]:
        return slugify("-".join(meaningful))
    common = common_words(files)
    return slugify("-".join(common[:2])) if common else "misc"


def common_words(files: Sequence[str]) -> List[str]:
    counts: Counter[str] = Counter()
    for path in files:
        stem = PurePosixPath(path).name.split(".", 1)[0]
        for word in _WORD_SPLIT.split(stem):
            lowered = word.strip().lower()
            if len(lowered) > 2 and lowered not in {"php", "js", "vue", "jsx", "ts", "tsx", "py"}:
                counts[lowered] += 1
    return [word for word, _ in sorted(counts.items(), key=lambda item: (-item[1], item[0]))]


def suggestion_confidence(files: Sequence[str], *, conceptual: bool) -> float:
    confidence = min(len(files) / 10, 0.5)
    if not conceptual:
        confidence += 0.3
    if len(common_basename_prefix(files)) > 3:
        confidence += 0.2
    return round(min(confidence, 1.0), 2)


def common_basename_prefix(files: Sequence[str]) -> str:
    if not files:
        return ""
    return os.path.commonprefix([PurePosixPath(path).name for path in files])


__all__ = [
    "CONCEPT_KEYWORDS",
    "common_basename_prefix",
    "common_words",
    "suggest_module_name",
    "suggest_potential_modules",
    "suggestion_confidence",
]
