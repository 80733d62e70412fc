"""
tests/conftest.py — pytest fixtures for the ShadowGuard auditor
"""
import io
import json
import threading

import pytest
from PIL import Image

from app import create_app
from extensions import db
from analyzer.backend import BackendError


class ScriptedBackend:
    """
    Stand-in for the remote backend. Each call pops the next scripted reply:
    a string is returned as the raw response text, an exception is raised,
    a dict is JSON-encoded.
    """

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []
        self._lock = threading.Lock()

    def script(self, *replies):
        with self._lock:
            self.replies = list(replies)
            self.calls = []

    def generate(self, image_b64, context, token):
        with self._lock:
            self.calls.append({"image": image_b64, "context": context})
            if not self.replies:
                raise BackendError("no scripted reply left")
            reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


class StubSource:
    """Tile source with a fixed height that records render calls."""

    def __init__(self, height, width=800):
        self.height = height
        self.width = width
        self.rendered = []

    def render(self, offset, height):
        self.rendered.append((offset, height))
        return f"tile-{offset}-{height}"


def make_response(findings=None, anchors=None, brief="Brief.", reasoning="Reasoning."):
    return {
        "findings": findings or [],
        "reasoning": {
            "reasoning_path": reasoning,
            "security_brief": brief,
            "catalog_anchors": anchors or [],
        },
    }


def make_anchor(anchor_id="sku1", name="Widget", price="$10.00", numeric=10.0,
                coords=(100, 100, 200, 400), visible=True, violation=False):
    return {
        "id": anchor_id,
        "name": name,
        "price": price,
        "numeric_price": numeric,
        "coordinates": list(coords),
        "is_violation": violation,
        "is_currently_visible": visible,
    }


def make_finding(pattern="SCARCITY", severity="Medium", coords=(100, 100, 200, 400)):
    return {
        "pattern_type": pattern,
        "coordinates": list(coords),
        "severity": severity,
        "truth_label": f"{pattern} label",
        "action_fix": "Ignore the timer.",
    }


@pytest.fixture(scope="session")
def backend():
    return ScriptedBackend()


@pytest.fixture(scope="session")
def app(backend):
    """Create a test Flask application."""
    application = create_app("testing", backend=backend)
    with application.app_context():
        db.create_all()
        yield application
        db.drop_all()


@pytest.fixture()
def client(app):
    """Test client for API integration tests."""
    return app.test_client()


# ── Synthetic screenshot fixtures ─────────────────────────────────────────────

def _png_bytes(width: int, height: int) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (240, 240, 240)).save(buffer, "PNG")
    return buffer.getvalue()


@pytest.fixture(scope="session")
def small_png_bytes():
    return _png_bytes(400, 600)


@pytest.fixture(scope="session")
def tall_png_bytes():
    """Two tiles at the default 1536/150 split."""
    return _png_bytes(400, 2000)
