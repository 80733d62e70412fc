"""
analyzer/__init__.py — ScreenAuditor orchestrator.

Walks a screenshot tile by tile: renders each tile, asks the analysis
client about it, remaps the findings to full-image space, reconciles the
price catalog and folds everything into a running threat status. A state
snapshot is yielded after every tile so callers can display progress.
"""
import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set

from analyzer import catalog, scoring
from analyzer.cancel import AuditCancelled, CancelToken
from analyzer.client import AnalysisClient, DEFAULT_BRIEF
from analyzer.tiling import (
    DEFAULT_OVERLAP, DEFAULT_TILE_HEIGHT, is_unanchored, plan_tiles, remap_box,
)

logger = logging.getLogger(__name__)

# Loop states
IDLE = "idle"
COOLING_DOWN = "cooling_down"
RENDERING = "rendering"
CALLING = "calling"
MERGING = "merging"
EMITTING = "emitting"
DONE = "done"
CANCELLED = "cancelled"
HALTED = "halted"

TERMINAL_STATES = (DONE, CANCELLED, HALTED)


def empty_signature() -> Dict[str, Any]:
    return {"catalog_anchors": [], "security_brief": DEFAULT_BRIEF, "reasoning_path": ""}


@dataclass
class AuditContext:
    """Mutable accumulator owned by one audit run and returned to the caller."""
    signature: Dict[str, Any] = field(default_factory=empty_signature)
    history: List[Dict[str, str]] = field(default_factory=list)
    findings: List[Dict[str, Any]] = field(default_factory=list)
    flagged_anchor_ids: Set[str] = field(default_factory=set)
    viewport_meta: Dict[str, Any] = field(default_factory=lambda: _meta(scoring.compute([])))
    state: str = IDLE
    error: Optional[str] = None
    tiles_total: int = 0
    tiles_done: int = 0

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "progress": {"current": self.tiles_done, "total": self.tiles_total},
            "findings": list(self.findings),
            "signature": dict(self.signature),
            "viewport_meta": dict(self.viewport_meta),
            "history": list(self.history),
            "error": self.error,
        }


def _meta(score_result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "threat_count": score_result["threat_count"],
        "score": score_result["score"],
        "status": score_result["status"],
        "advice": score_result["advice"],
    }


class ScreenAuditor:
    """Sequential tiled audit of one screenshot."""

    def __init__(self, client: AnalysisClient,
                 tile_max_height: int = DEFAULT_TILE_HEIGHT,
                 overlap: int = DEFAULT_OVERLAP,
                 cooldown_seconds: float = 5.0):
        self.client = client
        self.tile_max_height = tile_max_height
        self.overlap = overlap
        self.cooldown_seconds = cooldown_seconds

    @classmethod
    def from_config(cls, backend, config) -> "ScreenAuditor":
        return cls(
            AnalysisClient.from_config(backend, config),
            tile_max_height=config.get("TILE_MAX_HEIGHT", DEFAULT_TILE_HEIGHT),
            overlap=config.get("TILE_OVERLAP", DEFAULT_OVERLAP),
            cooldown_seconds=config.get("TILE_COOLDOWN_SECONDS", 5.0),
        )

    def run(self, source, context: AuditContext, token: CancelToken) -> Iterator[Dict[str, Any]]:
        """
        Audit `source` (anything with `.height` and `.render(offset, height)`).

        Yields a snapshot after every tile plus one terminal snapshot whose
        state is DONE, CANCELLED or HALTED. `context` holds the final
        accumulated state once the generator is exhausted.
        """
        tiles = plan_tiles(source.height, self.tile_max_height, self.overlap)
        context.tiles_total = len(tiles)
        context.findings = []
        context.flagged_anchor_ids = set()
        context.viewport_meta = _meta(scoring.compute([]))
        context.error = None
        logger.info("Audit started: %d tile(s) for %dpx image", len(tiles), source.height)

        try:
            for tile in tiles:
                if tile.index > 0:
                    context.state = COOLING_DOWN
                    token.wait(self.cooldown_seconds)
                token.raise_if_cancelled()

                context.state = RENDERING
                image_b64 = source.render(tile.offset, tile.height)

                context.state = CALLING
                result = self.client.analyze(image_b64, context.signature, token)

                context.state = MERGING
                self._merge(context, tile, source.height, result)

                context.state = EMITTING
                context.tiles_done = tile.index + 1
                yield context.snapshot()

                if result.get("error"):
                    logger.warning("Tile %d degraded, halting with %d finding(s)",
                                   tile.index, len(context.findings))
                    context.state = HALTED
                    yield context.snapshot()
                    return
        except AuditCancelled:
            logger.info("Audit cancelled after %d/%d tile(s)", context.tiles_done, len(tiles))
            context.state = CANCELLED
            yield context.snapshot()
            return

        context.state = DONE
        logger.info("Audit finished: %d finding(s), status=%s",
                    len(context.findings), context.viewport_meta["status"])
        yield context.snapshot()

    def _merge(self, context: AuditContext, tile, full_height: int, result: Dict[str, Any]):
        signature = dict(context.signature)
        signature["reasoning_path"] = result.get("reasoning_path", "")

        if result.get("error"):
            context.error = result["error"]
            context.signature = signature
            status = scoring.worse_of(context.viewport_meta["status"], result.get("status", scoring.CAUTION))
            context.viewport_meta = dict(context.viewport_meta, status=status,
                                         advice="Audit halted before the full image was covered.")
            return

        observations = []
        for anchor in result.get("catalog_anchors", []):
            anchor = dict(anchor)
            if not is_unanchored(anchor["coordinates"]):
                anchor["coordinates"] = remap_box(anchor["coordinates"], tile.offset, tile.height, full_height)
            observations.append(anchor)

        anchors, touched = catalog.reconcile(signature.get("catalog_anchors") or [], observations)
        tile_findings = catalog.violation_findings(touched, context.flagged_anchor_ids, tile.index)

        for finding in result.get("findings", []):
            if is_unanchored(finding["coordinates"]):
                continue
            tile_findings.append(dict(
                finding,
                coordinates=remap_box(finding["coordinates"], tile.offset, tile.height, full_height),
                tile=tile.index,
                source="backend",
            ))

        signature["catalog_anchors"] = anchors
        signature["security_brief"] = result.get("security_brief") or signature.get("security_brief") or DEFAULT_BRIEF
        context.signature = signature
        context.findings = context.findings + tile_findings
        context.history = context.history + [
            {"type": f["pattern_type"], "label": f["truth_label"]} for f in tile_findings
        ]

        recomputed = _meta(scoring.compute(context.findings))
        previous = context.viewport_meta["status"]
        if scoring.worse_of(previous, recomputed["status"]) != recomputed["status"]:
            recomputed["status"] = previous
            recomputed["advice"] = scoring.ADVICE[previous]
        context.viewport_meta = recomputed


def compute_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def generate_audit_id() -> str:
    return secrets.token_hex(4).upper()
