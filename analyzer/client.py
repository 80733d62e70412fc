"""
analyzer/client.py — Analysis Client

One remote call per tile, with response recovery, schema validation,
coordinate clamping and a bounded retry loop. Exhausted retries degrade to
an empty, error-marked scan result instead of raising; only cancellation
escapes as an exception.
"""
import logging
import math
from typing import Any, Dict, Optional

import jsonschema

from analyzer.cancel import AuditCancelled, CancelToken
from analyzer.prices import normalize_price
from analyzer.recovery import recover_json
from analyzer.scoring import CAUTION, normalize_severity
from analyzer.tiling import clamp_box

logger = logging.getLogger(__name__)

DEFAULT_BRIEF = "Session Start."
DEGRADED_ERROR = "Neural link failure (rate limited or busy)."
DEGRADED_REASONING = "Audit halted due to resource constraints."

_BOX_SCHEMA = {"type": "array"}

FINDING_SCHEMA = {
    "type": "object",
    "required": ["pattern_type", "coordinates", "severity", "truth_label", "action_fix"],
    "properties": {
        "pattern_type": {"type": "string"},
        "coordinates": _BOX_SCHEMA,
        "severity": {"type": "string"},
        "truth_label": {"type": "string"},
        "action_fix": {"type": "string"},
    },
}

ANCHOR_SCHEMA = {
    "type": "object",
    "required": ["id", "name", "price", "numeric_price", "coordinates",
                 "is_violation", "is_currently_visible"],
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string"},
        "price": {"type": "string"},
        "numeric_price": {"type": "number"},
        "coordinates": _BOX_SCHEMA,
        "is_violation": {"type": "boolean"},
        "is_currently_visible": {"type": "boolean"},
    },
}

SCAN_SCHEMA = {
    "type": "object",
    "required": ["findings", "reasoning"],
    "properties": {
        "findings": {"type": "array", "items": FINDING_SCHEMA},
        "reasoning": {
            "type": "object",
            "required": ["reasoning_path", "security_brief", "catalog_anchors"],
            "properties": {
                "reasoning_path": {"type": "string"},
                "security_brief": {"type": "string"},
                "catalog_anchors": {"type": "array", "items": ANCHOR_SCHEMA},
            },
        },
    },
}

_validator = jsonschema.Draft7Validator(SCAN_SCHEMA)


def backend_context(signature: Dict[str, Any]) -> Dict[str, Any]:
    """The slice of the session signature the backend is allowed to see."""
    return {
        "catalog_anchors": list(signature.get("catalog_anchors") or []),
        "security_brief": signature.get("security_brief") or DEFAULT_BRIEF,
    }


class AnalysisClient:
    """Wraps a backend exposing `generate(image_b64, context, token) -> str`."""

    def __init__(self, backend, max_retries: int = 2, backoff_seconds: float = 5.0):
        self.backend = backend
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    @classmethod
    def from_config(cls, backend, config) -> "AnalysisClient":
        return cls(
            backend,
            max_retries=config.get("MAX_RETRIES", 2),
            backoff_seconds=config.get("RETRY_BACKOFF_SECONDS", 5.0),
        )

    def analyze(self, image_b64: str, signature: Dict[str, Any], token: CancelToken) -> Dict[str, Any]:
        """
        Analyze one tile.

        Returns:
            {
                "findings": [...],          # tile-local, clamped
                "catalog_anchors": [...],   # tile-local, clamped
                "reasoning_path": str,
                "security_brief": str,
                "error": str,               # only when degraded
                "status": "CAUTION",        # only when degraded
            }

        Raises:
            AuditCancelled: the token was cancelled before or between attempts.
        """
        context = backend_context(signature)
        attempts = self.max_retries + 1

        for attempt in range(1, attempts + 1):
            token.raise_if_cancelled()
            try:
                raw = self.backend.generate(image_b64, context, token)
                parsed = recover_json(raw)
                _validator.validate(parsed)
                return _sanitize(parsed, context)
            except AuditCancelled:
                raise
            except Exception as exc:
                logger.warning("Analysis attempt %d/%d failed: %s", attempt, attempts, exc)
                if attempt < attempts:
                    token.wait(attempt * self.backoff_seconds)

        logger.error("Analysis retries exhausted after %d attempts", attempts)
        return {
            "findings": [],
            "catalog_anchors": [],
            "reasoning_path": DEGRADED_REASONING,
            "security_brief": context["security_brief"],
            "status": CAUTION,
            "error": DEGRADED_ERROR,
        }


def _sanitize(parsed: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    reasoning = parsed["reasoning"]
    return {
        "findings": [_clean_finding(f) for f in parsed["findings"]],
        "catalog_anchors": [_clean_anchor(a) for a in reasoning["catalog_anchors"]],
        "reasoning_path": reasoning["reasoning_path"],
        "security_brief": reasoning["security_brief"] or context["security_brief"],
    }


def _clean_finding(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "pattern_type": raw["pattern_type"].strip(),
        "coordinates": clamp_box(raw["coordinates"]),
        "severity": normalize_severity(raw["severity"]),
        "truth_label": raw["truth_label"],
        "action_fix": raw["action_fix"],
    }


def _clean_anchor(raw: Dict[str, Any]) -> Dict[str, Any]:
    anchor = {
        "id": raw["id"].strip(),
        "name": raw["name"],
        "price": raw["price"],
        "numeric_price": _numeric_price(raw),
        "coordinates": clamp_box(raw["coordinates"]),
        "is_violation": bool(raw["is_violation"]),
        "is_currently_visible": bool(raw["is_currently_visible"]),
    }
    if raw.get("original_price"):
        anchor["original_price"] = raw["original_price"]
    return anchor


def _numeric_price(raw: Dict[str, Any]) -> Optional[float]:
    # The displayed text wins over the backend's own arithmetic when it parses.
    parsed = normalize_price(raw["price"])
    if not math.isnan(parsed):
        return parsed
    try:
        value = float(raw["numeric_price"])
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None
