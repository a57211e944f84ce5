"""Near-duplicate detection and merging across provider batches."""
from __future__ import annotations

import re
from dataclasses import fields, replace
from typing import Iterable, List, Optional, Sequence

from . import config
from .geo import haversine_m
from .models import Place

_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")


def normalize_name(name: Optional[str]) -> str:
    if not name:
        return ""
    s = _PUNCT_RE.sub("", name.lower())
    return _SPACE_RE.sub(" ", s).strip()


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    s1 = normalize_name(a)
    s2 = normalize_name(b)
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 in s2 or s2 in s1:
        return 0.8
    chars1 = set(s1)
    chars2 = set(s2)
    return len(chars1 & chars2) / len(chars1 | chars2)


def are_duplicates(p1: Place, p2: Place) -> bool:
    if name_similarity(p1.name, p2.name) < config.NAME_SIMILARITY_THRESHOLD:
        return False
    distance = haversine_m(p1.latitude, p1.longitude, p2.latitude, p2.longitude)
    return distance <= config.PROXIMITY_THRESHOLD_M


def _is_empty(value: object) -> bool:
    return value is None or value == ""


def merge_places(primary: Place, secondary: Place) -> Place:
    """Keep primary's fields, backfilling empty ones from secondary."""
    updates = {}
    for f in fields(Place):
        if _is_empty(getattr(primary, f.name)) and not _is_empty(getattr(secondary, f.name)):
            updates[f.name] = getattr(secondary, f.name)
    return replace(primary, **updates) if updates else primary


def merge_and_dedupe(batches: Iterable[Sequence[Place]]) -> List[Place]:
    """Single pass, not transitive: a candidate is only compared against the
    (possibly already merged) earlier record it is scanned from."""
    flat: List[Place] = [p for batch in batches for p in batch]
    consumed = set()
    merged: List[Place] = []

    for i, place in enumerate(flat):
        if i in consumed:
            continue
        consumed.add(i)
        current = place
        for j in range(i + 1, len(flat)):
            if j in consumed:
                continue
            if are_duplicates(current, flat[j]):
                current = merge_places(current, flat[j])
                consumed.add(j)
        merged.append(current)
    return merged


def sort_by_distance(places: Sequence[Place]) -> List[Place]:
    def sort_key(item):
        index, place = item
        if place.distance_m is None:
            return (1, 0.0, index)
        return (0, float(place.distance_m), index)

    return [p for _, p in sorted(enumerate(places), key=sort_key)]
