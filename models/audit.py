"""models/audit.py — SQLAlchemy model for finished screenshot audit runs."""
import datetime
import json

from extensions import db


class Audit(db.Model):
    __tablename__ = "audit"

    id = db.Column(db.String(8), primary_key=True)          # e.g. 'A3F8B21C'
    session_id = db.Column(db.String(64), index=True, nullable=False)
    sha256 = db.Column(db.String(64), index=True, nullable=False)
    filename = db.Column(db.String(255))
    width = db.Column(db.Integer)
    height = db.Column(db.Integer)
    tile_count = db.Column(db.Integer)
    tiles_done = db.Column(db.Integer)
    state = db.Column(db.String(16))                         # 'done' | 'halted' | 'cancelled'
    threat_count = db.Column(db.Integer)
    score = db.Column(db.Integer)
    status = db.Column(db.String(16))                        # 'SAFE' | 'CAUTION' | 'COMPROMISED'
    advice = db.Column(db.String(255))
    error = db.Column(db.String(255))
    catalog_snapshot = db.Column(db.Text)                    # JSON list of catalog anchors
    audited_at = db.Column(db.DateTime, default=lambda: datetime.datetime.now(datetime.timezone.utc))

    findings = db.relationship("Finding", backref="audit", lazy=True,
                               cascade="all, delete-orphan")

    def to_dict(self):
        try:
            catalog = json.loads(self.catalog_snapshot) if self.catalog_snapshot else []
        except ValueError:
            catalog = []
        return {
            "audit_id": self.id,
            "session_id": self.session_id,
            "filename": self.filename,
            "sha256": self.sha256,
            "width": self.width,
            "height": self.height,
            "progress": {"current": self.tiles_done, "total": self.tile_count},
            "state": self.state,
            "viewport_meta": {
                "threat_count": self.threat_count,
                "score": self.score,
                "status": self.status,
                "advice": self.advice,
            },
            "error": self.error,
            "audited_at": self.audited_at.isoformat() if self.audited_at else None,
            "catalog_anchors": catalog,
            "findings": [f.to_dict() for f in self.findings],
        }

    def to_summary(self):
        return {
            "audit_id": self.id,
            "session_id": self.session_id,
            "filename": self.filename,
            "state": self.state,
            "status": self.status,
            "threat_count": self.threat_count,
            "audited_at": self.audited_at.isoformat() if self.audited_at else None,
        }

    def __repr__(self):
        return f"<Audit {self.id} status={self.status} file={self.filename}>"
