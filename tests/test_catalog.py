"""tests/test_catalog.py — Catalog Reconciliation Engine"""
from analyzer.catalog import DRIFT_PATTERN, reconcile, violation_findings

from conftest import make_anchor


def test_first_sighting_is_never_a_violation():
    catalog, touched = reconcile([], [make_anchor(price="$10.00", numeric=10.0, violation=True)])
    assert len(catalog) == 1
    anchor = catalog[0]
    assert anchor["is_violation"] is False
    assert anchor["original_price"] == "$10.00"
    assert anchor["original_numeric_price"] == 10.0
    assert touched == catalog


def test_drift_above_tolerance_is_violation():
    catalog, _ = reconcile([], [make_anchor(numeric=10.0)])
    catalog, touched = reconcile(catalog, [make_anchor(price="$10.02", numeric=10.02)])
    assert touched[0]["is_violation"] is True
    assert touched[0]["original_numeric_price"] == 10.0
    assert touched[0]["numeric_price"] == 10.02


def test_drift_within_tolerance_is_not_violation():
    catalog, _ = reconcile([], [make_anchor(numeric=10.0)])
    catalog, _ = reconcile(catalog, [make_anchor(price="$10.005", numeric=10.005)])
    assert catalog[0]["is_violation"] is False


def test_backend_flag_alone_does_not_flag():
    catalog, _ = reconcile([], [make_anchor(numeric=10.0)])
    catalog, _ = reconcile(catalog, [make_anchor(numeric=10.0, violation=True)])
    assert catalog[0]["is_violation"] is False


def test_violation_is_monotonic():
    catalog, _ = reconcile([], [make_anchor(numeric=10.0)])
    catalog, _ = reconcile(catalog, [make_anchor(price="$12.00", numeric=12.0)])
    catalog, _ = reconcile(catalog, [make_anchor(price="$10.00", numeric=10.0)])
    assert catalog[0]["is_violation"] is True
    assert catalog[0]["original_numeric_price"] == 10.0
    assert catalog[0]["price"] == "$10.00"


def test_baseline_is_never_overwritten():
    catalog, _ = reconcile([], [make_anchor(numeric=10.0)])
    for price in (11.0, 9.0, 15.0):
        catalog, _ = reconcile(catalog, [make_anchor(numeric=price, price=f"${price:.2f}")])
    assert catalog[0]["original_numeric_price"] == 10.0
    assert catalog[0]["original_price"] == "$10.00"


def test_match_by_name_keeps_existing_id():
    catalog, _ = reconcile([], [make_anchor(anchor_id="sku1", name="Pro Plan", numeric=10.0)])
    catalog, _ = reconcile(catalog, [make_anchor(anchor_id="tier-pro", name="  pro plan ", numeric=14.0)])
    assert len(catalog) == 1
    assert catalog[0]["id"] == "sku1"
    assert catalog[0]["is_violation"] is True


def test_renamed_item_with_new_id_is_a_new_anchor():
    catalog, _ = reconcile([], [make_anchor(anchor_id="sku1", name="Basic", numeric=10.0)])
    catalog, _ = reconcile(catalog, [make_anchor(anchor_id="sku9", name="Starter", numeric=12.0)])
    assert [a["id"] for a in catalog] == ["sku1", "sku9"]
    assert not any(a["is_violation"] for a in catalog)


def test_observation_without_id_is_skipped():
    catalog, touched = reconcile([], [make_anchor(anchor_id=""), make_anchor(anchor_id="ok")])
    assert [a["id"] for a in catalog] == ["ok"]
    assert len(touched) == 1


def test_inputs_are_not_mutated():
    existing = [dict(make_anchor(numeric=10.0), original_numeric_price=10.0, original_price="$10.00")]
    snapshot = [dict(a) for a in existing]
    reconcile(existing, [make_anchor(numeric=20.0, price="$20.00")])
    assert existing == snapshot


def test_unparsed_prices_never_drift():
    catalog, _ = reconcile([], [make_anchor(price="N/A", numeric=None)])
    catalog, _ = reconcile(catalog, [make_anchor(price="$12.00", numeric=12.0)])
    assert catalog[0]["is_violation"] is False
    assert catalog[0]["original_numeric_price"] == 12.0


# ── violation_findings ────────────────────────────────────────────────────────

def _violated(**kwargs):
    return dict(make_anchor(**kwargs), is_violation=True, original_price="$10.00")


def test_violation_findings_for_visible_positioned_anchor():
    flagged = set()
    findings = violation_findings([_violated(price="$12.00")], flagged, tile_index=1)
    assert len(findings) == 1
    f = findings[0]
    assert f["pattern_type"] == DRIFT_PATTERN
    assert f["severity"] == "High"
    assert f["anchor_id"] == "sku1"
    assert f["tile"] == 1
    assert "Re-verify the total" in f["action_fix"]
    assert flagged == {"sku1"}


def test_violation_findings_skip_hidden_unanchored_and_flagged():
    hidden = _violated(anchor_id="a", visible=False)
    unanchored = _violated(anchor_id="b", coords=(0, 0, 0, 0))
    already = _violated(anchor_id="c")
    assert violation_findings([hidden, unanchored, already], {"c"}, tile_index=0) == []
