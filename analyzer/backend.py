"""
analyzer/backend.py — Remote vision backend (Gemini generateContent over REST).

The backend is a narrow oracle: it receives one base64 JPEG tile plus the
carried audit context and returns raw response text. Parsing, validation and
retries live in analyzer/client.py.
"""
import json
import logging
from typing import Any, Dict, List

import requests

from analyzer.cancel import CancelToken

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """
You are a forensic auditor of user interfaces working on behalf of the END USER.
Flag deceptive or manipulative design only when the intent is clear:
- Financial risk first: bait-and-switch pricing, hidden fees, items sneaked into the basket, visual interference.
- Psychological pressure: confirmshaming, fake scarcity or countdowns that reset, obstructed cancellation.
- Ordinary promotions are not deception. Mark common marketing that does not lie as Low severity.

Coordinates: return tight boxes as [ymin, xmin, ymax, xmax] normalized to 0-1000 over THIS image.

Catalog: the audit context lists catalog_anchors seen earlier in the session. Track every priced
item you can see in reasoning.catalog_anchors, reusing the existing id when it is the same item.
Report even a 0.01 price discrepancy against an earlier sighting.

reasoning.reasoning_path: briefly name the psychological lever being pulled.
reasoning.security_brief: one short paragraph of context worth carrying to the next screen.
action_fix: a concrete instruction telling the user how to avoid the trap.
Taxonomy: BAIT-AND-SWITCH, SCARCITY, VISUAL-INTERFERENCE, SNEAK-IN, CONFIRMSHAMING, HIDDEN_FEE.
""".strip()

USER_PROMPT = "AUDIT CONTEXT: {context}\nPerform a forensic analysis of this UI segment. Flag all deception."

_BOX = {"type": "ARRAY", "items": {"type": "NUMBER"}}

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "findings": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "pattern_type": {"type": "STRING"},
                    "coordinates": _BOX,
                    "severity": {"type": "STRING"},
                    "truth_label": {"type": "STRING"},
                    "action_fix": {"type": "STRING"},
                },
                "required": ["pattern_type", "coordinates", "severity", "truth_label", "action_fix"],
            },
        },
        "reasoning": {
            "type": "OBJECT",
            "properties": {
                "reasoning_path": {"type": "STRING"},
                "security_brief": {"type": "STRING"},
                "catalog_anchors": {
                    "type": "ARRAY",
                    "items": {
                        "type": "OBJECT",
                        "properties": {
                            "id": {"type": "STRING"},
                            "name": {"type": "STRING"},
                            "price": {"type": "STRING"},
                            "numeric_price": {"type": "NUMBER"},
                            "original_price": {"type": "STRING"},
                            "original_numeric_price": {"type": "NUMBER"},
                            "coordinates": _BOX,
                            "is_violation": {"type": "BOOLEAN"},
                            "is_currently_visible": {"type": "BOOLEAN"},
                        },
                        "required": ["id", "name", "price", "numeric_price", "coordinates",
                                     "is_violation", "is_currently_visible"],
                    },
                },
            },
            "required": ["reasoning_path", "security_brief", "catalog_anchors"],
        },
    },
    "required": ["findings", "reasoning"],
}


class BackendError(RuntimeError):
    """Transport-level failure: unreachable, rate limited, or an empty answer."""


class GeminiBackend:
    """Calls the Gemini REST API with a JSON response schema."""

    def __init__(self, api_key: str, model: str, url_template: str,
                 timeout: float = 180.0, max_output_tokens: int = 20000,
                 thinking_budget: int = 16384):
        self.api_key = api_key
        self.model = model
        self.url = url_template.format(model=model)
        self.timeout = timeout
        self.max_output_tokens = max_output_tokens
        self.thinking_budget = thinking_budget
        self.session = requests.Session()

    @classmethod
    def from_config(cls, config) -> "GeminiBackend":
        return cls(
            api_key=config.get("GEMINI_API_KEY", ""),
            model=config.get("GEMINI_MODEL", "gemini-3-pro-preview"),
            url_template=config.get("GEMINI_API_URL"),
            timeout=config.get("BACKEND_TIMEOUT", 180.0),
        )

    def generate(self, image_b64: str, context: Dict[str, Any], token: CancelToken) -> str:
        """Send one tile and return the model's text output."""
        if not self.api_key:
            raise BackendError("GEMINI_API_KEY is not configured")

        payload = {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [{
                "role": "user",
                "parts": [
                    {"inlineData": {"mimeType": "image/jpeg", "data": _strip_data_url(image_b64)}},
                    {"text": USER_PROMPT.format(context=json.dumps(context, ensure_ascii=False))},
                ],
            }],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
                "maxOutputTokens": self.max_output_tokens,
                "thinkingConfig": {"thinkingBudget": self.thinking_budget},
            },
        }

        try:
            resp = self.session.post(
                self.url,
                json=payload,
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise BackendError(f"Backend unreachable: {e}") from e

        # A reply that arrives after cancellation is discarded.
        token.raise_if_cancelled()

        if resp.status_code == 429:
            raise BackendError("Backend rate limit hit (HTTP 429)")
        if resp.status_code >= 400:
            raise BackendError(f"Backend returned HTTP {resp.status_code}: {resp.text[:200]}")

        try:
            body = resp.json()
        except ValueError as e:
            raise BackendError(f"Backend returned non-JSON envelope: {e}") from e

        text = _candidate_text(body)
        if not text:
            raise BackendError("Backend returned no candidate text")
        logger.debug("Backend answered %d chars (model=%s)", len(text), self.model)
        return text


def _candidate_text(body: Dict[str, Any]) -> str:
    candidates: List[Dict[str, Any]] = body.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if not p.get("thought"))


def _strip_data_url(image_b64: str) -> str:
    """Accept both bare base64 and `data:image/jpeg;base64,...` URLs."""
    if image_b64.startswith("data:") and "," in image_b64:
        return image_b64.split(",", 1)[1]
    return image_b64
