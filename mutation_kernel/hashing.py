"""
Mutation Kernel — Canonical Hashing

Deterministic canonical serialization + SHA-256 hashing.

Rules:
  - Attributes in session order (the metadata provider's order)
  - Multipliers serialised as their shortest repr string
  - UTF-8 JSON, no whitespace, no platform newline
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, List, Optional

from .domain_types import MutationState


def canonical_serialize(state: MutationState) -> bytes:
    """Canonical serialization of MutationState to UTF-8 JSON bytes."""
    obj = _build_canonical_dict(state)
    return json.dumps(obj, ensure_ascii=True, separators=(",", ":"), sort_keys=False).encode("utf-8")


def canonical_hash(state: MutationState) -> str:
    """SHA-256 of canonical serialization. Lowercase hex string."""
    return hashlib.sha256(canonical_serialize(state)).hexdigest()


def _float_text(value: Optional[float]) -> Optional[str]:
    return None if value is None else repr(value)


def _build_canonical_dict(state: MutationState) -> Dict[str, Any]:
    attributes: List[Dict[str, Any]] = []
    for v in state.attributes:
        attributes.append({
            "attribute_id": v.attribute_id,
            "min_multiplier": _float_text(v.range.min_multiplier),
            "max_multiplier": _float_text(v.range.max_multiplier),
            "high_is_good": v.range.high_is_good,
            "current_multiplier": _float_text(v.current_multiplier),
        })

    return {
        "kernel_version": 1,
        "entity_id": state.entity_id,
        "entity_kind": state.entity_kind.value,
        "item_type_id": state.item_type_id,
        "selected_mutation_item_id": state.selected_mutation_item_id,
        "attributes": attributes,
        "editing_attribute_id": state.editing_attribute_id,
    }
