"""
analyzer/catalog.py — Catalog Reconciliation Engine

Merges priced-item observations into the session catalog. The first
sighting of an item fixes its baseline price; any later sighting more than
0.01 away from that baseline marks the item as violated, permanently for
the session. Violations are derived locally rather than taken from the
backend's own flag.
"""
import logging
import math
from typing import Dict, Iterable, List, Optional, Set, Tuple

from analyzer.tiling import is_unanchored

logger = logging.getLogger(__name__)

PRICE_TOLERANCE = 0.01

DRIFT_PATTERN = "BAIT-AND-SWITCH"
DRIFT_FIX = "Suspicious price movement detected. Re-verify the total before confirming."


def _name_key(name) -> str:
    return str(name or "").strip().lower()


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def _find_match(catalog: List[Dict], observation: Dict) -> Optional[int]:
    for idx, anchor in enumerate(catalog):
        if anchor.get("id") == observation["id"]:
            return idx
    key = _name_key(observation.get("name"))
    if key:
        for idx, anchor in enumerate(catalog):
            if _name_key(anchor.get("name")) == key:
                return idx
    return None


def _merge(existing: Dict, observation: Dict) -> Dict:
    baseline = existing.get("original_numeric_price")
    if not _is_number(baseline):
        baseline = observation.get("numeric_price")

    current = observation.get("numeric_price")
    drift = _is_number(current) and _is_number(baseline) and abs(current - baseline) > PRICE_TOLERANCE

    merged = dict(observation)
    merged["id"] = existing["id"]
    merged["original_price"] = (existing.get("original_price")
                                or observation.get("original_price")
                                or observation.get("price"))
    merged["original_numeric_price"] = baseline
    merged["is_violation"] = bool(existing.get("is_violation")) or drift
    if drift and not existing.get("is_violation"):
        logger.info("Price drift on anchor %s: %s -> %s",
                    existing["id"], merged["original_price"], observation.get("price"))
    return merged


def _first_sighting(observation: Dict) -> Dict:
    anchor = dict(observation)
    anchor["original_price"] = observation.get("price")
    anchor["original_numeric_price"] = observation.get("numeric_price")
    anchor["is_violation"] = False
    return anchor


def reconcile(catalog: Iterable[Dict], incoming: Iterable[Dict]) -> Tuple[List[Dict], List[Dict]]:
    """
    Merge one tile's anchor observations into the catalog.

    Returns:
        (updated_catalog, touched) where `touched` lists the merged or newly
        inserted anchors in observation order. Inputs are not mutated.
    """
    merged = [dict(a) for a in catalog]
    touched: List[Dict] = []

    for observation in incoming:
        if not observation.get("id"):
            logger.debug("Skipping catalog observation without id: %r", observation.get("name"))
            continue

        idx = _find_match(merged, observation)
        if idx is None:
            anchor = _first_sighting(observation)
            merged.append(anchor)
        else:
            anchor = _merge(merged[idx], observation)
            merged[idx] = anchor
        touched.append(anchor)

    return merged, touched


def violation_findings(anchors: Iterable[Dict], flagged_ids: Set[str], tile_index: int) -> List[Dict]:
    """
    Synthetic BAIT-AND-SWITCH findings for violated, visible, positioned
    anchors. Each anchor is reported at most once per run; `flagged_ids` is
    updated in place.
    """
    findings = []
    for anchor in anchors:
        if not anchor.get("is_violation") or not anchor.get("is_currently_visible"):
            continue
        if is_unanchored(anchor.get("coordinates")) or anchor["id"] in flagged_ids:
            continue
        flagged_ids.add(anchor["id"])
        findings.append({
            "pattern_type": DRIFT_PATTERN,
            "coordinates": list(anchor["coordinates"]),
            "severity": "High",
            "truth_label": (f"{anchor.get('name') or anchor['id']}: price moved from "
                            f"{anchor.get('original_price')} to {anchor.get('price')} since session start."),
            "action_fix": DRIFT_FIX,
            "tile": tile_index,
            "source": "catalog",
            "anchor_id": anchor["id"],
        })
    return findings
