"""
models/session.py — persisted session signature and audit history.

The store is best-effort: database failures are logged and swallowed so an
audit that already ran stays valid in memory for the caller. Writes happen on
the audit worker thread, so reads refresh rows from the database.
"""
import datetime
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models.audit import Audit
from models.finding import Finding

logger = logging.getLogger(__name__)


class SessionSignature(db.Model):
    __tablename__ = "session_signature"

    session_id = db.Column(db.String(64), primary_key=True)
    catalog_anchors = db.Column(db.Text)      # JSON list of catalog anchors
    security_brief = db.Column(db.Text)
    reasoning_path = db.Column(db.Text)
    updated_at = db.Column(db.DateTime, default=lambda: datetime.datetime.now(datetime.timezone.utc),
                           onupdate=lambda: datetime.datetime.now(datetime.timezone.utc))

    def to_dict(self):
        try:
            anchors = json.loads(self.catalog_anchors) if self.catalog_anchors else []
        except ValueError:
            anchors = []
        return {
            "catalog_anchors": anchors,
            "security_brief": self.security_brief or "",
            "reasoning_path": self.reasoning_path or "",
        }


class HistoryEntry(db.Model):
    __tablename__ = "history_entry"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    session_id = db.Column(db.String(64), index=True, nullable=False)
    type = db.Column(db.String(64))
    label = db.Column(db.Text)

    def to_dict(self):
        return {"type": self.type, "label": self.label}


def load_signature(session_id: str) -> Optional[Dict[str, Any]]:
    """Return the stored signature for a session, or None."""
    try:
        row = db.session.get(SessionSignature, session_id, populate_existing=True)
    except SQLAlchemyError as e:
        logger.warning("Failed to load signature for %s: %s", session_id, e)
        db.session.rollback()
        return None
    return row.to_dict() if row else None


def load_history(session_id: str) -> List[Dict[str, str]]:
    try:
        rows = (HistoryEntry.query.filter_by(session_id=session_id)
                .order_by(HistoryEntry.id.asc()).populate_existing().all())
    except SQLAlchemyError as e:
        logger.warning("Failed to load history for %s: %s", session_id, e)
        db.session.rollback()
        return []
    return [r.to_dict() for r in rows]


def save_signature(session_id: str, signature: Dict[str, Any],
                   history: List[Dict[str, str]], limit: int = 100) -> bool:
    """Replace the stored signature and keep the last `limit` history entries."""
    try:
        row = db.session.get(SessionSignature, session_id)
        if row is None:
            row = SessionSignature(session_id=session_id)
            db.session.add(row)
        row.catalog_anchors = json.dumps(signature.get("catalog_anchors") or [], default=str)
        row.security_brief = signature.get("security_brief") or ""
        row.reasoning_path = signature.get("reasoning_path") or ""

        HistoryEntry.query.filter_by(session_id=session_id).delete()
        for item in history[-limit:]:
            db.session.add(HistoryEntry(session_id=session_id,
                                        type=item.get("type", ""),
                                        label=item.get("label", "")))
        db.session.commit()
        return True
    except SQLAlchemyError as e:
        logger.warning("Failed to persist session %s: %s", session_id, e)
        db.session.rollback()
        return False


def clear_session(session_id: str) -> bool:
    try:
        SessionSignature.query.filter_by(session_id=session_id).delete()
        HistoryEntry.query.filter_by(session_id=session_id).delete()
        db.session.commit()
        return True
    except SQLAlchemyError as e:
        logger.warning("Failed to clear session %s: %s", session_id, e)
        db.session.rollback()
        return False


def record_audit(audit_id: str, session_id: str, sha256: str, filename: str,
                 width: int, height: int, snapshot: Dict[str, Any]) -> bool:
    """Store the terminal snapshot of a run together with its findings."""
    meta = snapshot["viewport_meta"]
    try:
        audit = Audit(
            id=audit_id,
            session_id=session_id,
            sha256=sha256,
            filename=filename,
            width=width,
            height=height,
            tile_count=snapshot["progress"]["total"],
            tiles_done=snapshot["progress"]["current"],
            state=snapshot["state"],
            threat_count=meta["threat_count"],
            score=meta["score"],
            status=meta["status"],
            advice=meta["advice"],
            error=snapshot.get("error"),
            catalog_snapshot=json.dumps(snapshot["signature"].get("catalog_anchors") or [], default=str),
        )
        for f_dict in snapshot["findings"]:
            db.session.add(Finding.from_dict(audit_id, f_dict))
        db.session.add(audit)
        db.session.commit()
        return True
    except SQLAlchemyError as e:
        logger.warning("Failed to record audit %s: %s", audit_id, e)
        db.session.rollback()
        return False
