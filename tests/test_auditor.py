"""tests/test_auditor.py — ScreenAuditor tile loop, end to end with a scripted backend"""
import time

from analyzer import (
    CANCELLED, DONE, EMITTING, HALTED, AuditContext, ScreenAuditor,
)
from analyzer.backend import BackendError
from analyzer.cancel import CancelToken
from analyzer.catalog import DRIFT_PATTERN
from analyzer.client import AnalysisClient
from analyzer.scoring import CAUTION, COMPROMISED, SAFE

from conftest import ScriptedBackend, StubSource, make_anchor, make_finding, make_response


def _auditor(backend, cooldown=0.0, retries=0):
    client = AnalysisClient(backend, max_retries=retries, backoff_seconds=0)
    return ScreenAuditor(client, tile_max_height=1536, overlap=150, cooldown_seconds=cooldown)


def test_single_tile_done():
    backend = ScriptedBackend([make_response(findings=[make_finding(severity="Medium")])])
    context = AuditContext()
    snapshots = list(_auditor(backend).run(StubSource(1000), context, CancelToken()))

    assert [s["state"] for s in snapshots] == [EMITTING, DONE]
    final = snapshots[-1]
    assert final["progress"] == {"current": 1, "total": 1}
    assert final["viewport_meta"]["status"] == CAUTION
    assert final["findings"][0]["source"] == "backend"
    assert final["findings"][0]["tile"] == 0
    assert context.history == [{"type": "SCARCITY", "label": "SCARCITY label"}]


def test_tiles_are_rendered_in_order_with_offsets():
    backend = ScriptedBackend([make_response(), make_response(), make_response()])
    source = StubSource(3000)
    list(_auditor(backend).run(source, AuditContext(), CancelToken()))
    assert source.rendered == [(0, 1536), (1386, 1536), (2772, 228)]
    assert [c["image"] for c in backend.calls] == ["tile-0-1536", "tile-1386-1536", "tile-2772-228"]


def test_findings_are_remapped_to_full_image():
    finding = make_finding(coords=(0, 50, 1000, 950))
    backend = ScriptedBackend([make_response(), make_response(findings=[finding])])
    snapshots = list(_auditor(backend).run(StubSource(2000), AuditContext(), CancelToken()))
    remapped = snapshots[-1]["findings"][0]
    # second tile: offset 1386, height 614
    assert remapped["coordinates"] == [693, 50, 1000, 950]
    assert remapped["tile"] == 1


def test_unanchored_backend_findings_are_dropped():
    backend = ScriptedBackend([make_response(findings=[make_finding(coords=(0, 0, 0, 0))])])
    snapshots = list(_auditor(backend).run(StubSource(500), AuditContext(), CancelToken()))
    assert snapshots[-1]["findings"] == []
    assert snapshots[-1]["viewport_meta"]["status"] == SAFE


def test_catalog_carries_between_tiles():
    backend = ScriptedBackend([
        make_response(anchors=[make_anchor()], brief="Saw the cart."),
        make_response(),
    ])
    list(_auditor(backend).run(StubSource(2000), AuditContext(), CancelToken()))
    second_context = backend.calls[1]["context"]
    assert [a["id"] for a in second_context["catalog_anchors"]] == ["sku1"]
    assert second_context["security_brief"] == "Saw the cart."


def test_price_drift_across_tiles_yields_one_bait_and_switch():
    backend = ScriptedBackend([
        make_response(anchors=[make_anchor(price="$10.00", numeric=10.0)]),
        make_response(anchors=[make_anchor(price="$12.00", numeric=12.0)]),
    ])
    context = AuditContext()
    snapshots = list(_auditor(backend).run(StubSource(2000), context, CancelToken()))

    final = snapshots[-1]
    assert final["state"] == DONE
    drift = [f for f in final["findings"] if f["pattern_type"] == DRIFT_PATTERN]
    assert len(drift) == 1
    assert drift[0]["severity"] == "High"
    assert drift[0]["anchor_id"] == "sku1"
    assert drift[0]["source"] == "catalog"
    assert final["viewport_meta"]["status"] == COMPROMISED
    assert context.signature["catalog_anchors"][0]["is_violation"] is True


def test_drift_against_previous_session_catalog():
    prior = dict(make_anchor(price="$10.00", numeric=10.0),
                 original_price="$10.00", original_numeric_price=10.0)
    context = AuditContext(signature={"catalog_anchors": [prior], "security_brief": "Earlier scan."})
    backend = ScriptedBackend([make_response(anchors=[make_anchor(price="$10.50", numeric=10.5)])])
    snapshots = list(_auditor(backend).run(StubSource(800), context, CancelToken()))
    assert snapshots[-1]["viewport_meta"]["status"] == COMPROMISED
    assert backend.calls[0]["context"]["security_brief"] == "Earlier scan."


def test_violated_anchor_is_reported_once_per_run():
    backend = ScriptedBackend([
        make_response(anchors=[make_anchor(numeric=10.0, price="$10.00")]),
        make_response(anchors=[make_anchor(numeric=12.0, price="$12.00")]),
        make_response(anchors=[make_anchor(numeric=12.0, price="$12.00")]),
    ])
    snapshots = list(_auditor(backend).run(StubSource(3000), AuditContext(), CancelToken()))
    drift = [f for f in snapshots[-1]["findings"] if f["pattern_type"] == DRIFT_PATTERN]
    assert len(drift) == 1


def test_degraded_tile_halts_and_keeps_earlier_results():
    backend = ScriptedBackend([
        make_response(findings=[make_finding(severity="Low")]),
        BackendError("rate limited"),
    ])
    snapshots = list(_auditor(backend).run(StubSource(3000), AuditContext(), CancelToken()))

    assert snapshots[-1]["state"] == HALTED
    assert len(backend.calls) == 2
    final = snapshots[-1]
    assert len(final["findings"]) == 1
    assert final["error"]
    assert final["viewport_meta"]["status"] == CAUTION
    assert final["progress"] == {"current": 2, "total": 3}


def test_degraded_first_tile_surfaces_caution():
    backend = ScriptedBackend([BackendError("down")])
    snapshots = list(_auditor(backend).run(StubSource(500), AuditContext(), CancelToken()))
    assert snapshots[-1]["state"] == HALTED
    assert snapshots[-1]["viewport_meta"]["status"] == CAUTION
    assert snapshots[-1]["error"]


def test_status_never_downgrades_within_a_run():
    backend = ScriptedBackend([
        make_response(findings=[make_finding(pattern="SNEAK-IN", severity="High")]),
        make_response(findings=[make_finding(severity="Low")]),
    ])
    statuses = [s["viewport_meta"]["status"]
                for s in _auditor(backend).run(StubSource(2000), AuditContext(), CancelToken())]
    assert statuses == [COMPROMISED, COMPROMISED, COMPROMISED]


def test_cancel_during_cooldown_skips_next_call():
    backend = ScriptedBackend([
        make_response(findings=[make_finding()]),
        make_response(findings=[make_finding(pattern="CONFIRMSHAMING")]),
    ])
    token = CancelToken()
    run = _auditor(backend, cooldown=30).run(StubSource(2000), AuditContext(), token)

    first = next(run)
    assert first["state"] == EMITTING
    token.cancel()
    started = time.monotonic()
    final = next(run)

    assert time.monotonic() - started < 5
    assert final["state"] == CANCELLED
    assert len(backend.calls) == 1
    assert [f["pattern_type"] for f in final["findings"]] == ["SCARCITY"]


def test_cancel_before_start_makes_no_calls():
    backend = ScriptedBackend([make_response()])
    token = CancelToken()
    token.cancel()
    snapshots = list(_auditor(backend).run(StubSource(500), AuditContext(), token))
    assert [s["state"] for s in snapshots] == [CANCELLED]
    assert backend.calls == []
