"""
analyzer/scoring.py — Threat score aggregation.

Computes an additive threat score from the cumulative findings and maps it
to a viewport status. Financial-risk categories escalate straight to
COMPROMISED regardless of score.
"""
from typing import List, Dict, Any

SEVERITY_WEIGHTS = {
    "High": 10,
    "Medium": 3,
    "Low": 1,
}

SAFE = "SAFE"
CAUTION = "CAUTION"
COMPROMISED = "COMPROMISED"

STATUS_RANK = {SAFE: 0, CAUTION: 1, COMPROMISED: 2}

ADVICE = {
    SAFE: "Interface appears transparent. Safe to proceed.",
    CAUTION: "Manipulative patterns detected. Stay objective.",
    COMPROMISED: "High deceptive load or financial risk. Verify all totals.",
}

COMPROMISED_SCORE = 15
FINANCIAL_RISK_MARKERS = ("SWITCH", "BAIT", "SNEAK", "HIDDEN_FEE")


def normalize_severity(value) -> str:
    s = str(value or "").lower()
    if "high" in s:
        return "High"
    if "low" in s:
        return "Low"
    return "Medium"


def is_financial_risk(pattern_type: str) -> bool:
    category = str(pattern_type or "").upper().replace("-", "_").replace(" ", "_")
    return any(marker in category for marker in FINANCIAL_RISK_MARKERS)


def compute(findings: List[Dict]) -> Dict[str, Any]:
    """
    Compute threat score and status from a list of finding dicts.

    Returns:
        {
            "threat_count": int,
            "score": int,
            "status": "SAFE" | "CAUTION" | "COMPROMISED",
            "advice": str,
            "severity_counts": {"High": n, "Medium": n, "Low": n},
        }
    """
    score = 0
    threat_count = 0
    financial_risk = False
    severity_counts: Dict[str, int] = {k: 0 for k in SEVERITY_WEIGHTS}

    for finding in findings:
        sev = normalize_severity(finding.get("severity"))
        threat_count += 1
        severity_counts[sev] += 1
        score += SEVERITY_WEIGHTS[sev]
        if is_financial_risk(finding.get("pattern_type")):
            financial_risk = True

    if score >= COMPROMISED_SCORE or financial_risk:
        status = COMPROMISED
    elif score > 0:
        status = CAUTION
    else:
        status = SAFE

    return {
        "threat_count": threat_count,
        "score": score,
        "status": status,
        "advice": ADVICE[status],
        "severity_counts": severity_counts,
    }


def worse_of(current: str, candidate: str) -> str:
    """Return the more severe of two statuses."""
    return candidate if STATUS_RANK.get(candidate, 0) > STATUS_RANK.get(current, 0) else current
