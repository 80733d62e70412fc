"""models/finding.py — SQLAlchemy model for individual dark-pattern findings."""
import json

from extensions import db


class Finding(db.Model):
    __tablename__ = "finding"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    audit_id = db.Column(db.String(8), db.ForeignKey("audit.id"), nullable=False)
    pattern_type = db.Column(db.String(64))   # 'BAIT-AND-SWITCH' | 'SCARCITY' | ...
    severity = db.Column(db.String(8))        # 'High' | 'Medium' | 'Low'
    coordinates = db.Column(db.String(64))    # JSON [ymin, xmin, ymax, xmax], 0-1000
    truth_label = db.Column(db.Text)
    action_fix = db.Column(db.Text)
    tile = db.Column(db.Integer)
    source = db.Column(db.String(16))         # 'backend' | 'catalog'

    @classmethod
    def from_dict(cls, audit_id: str, data: dict) -> "Finding":
        return cls(
            audit_id=audit_id,
            pattern_type=data.get("pattern_type", ""),
            severity=data.get("severity", "Medium"),
            coordinates=json.dumps(list(data.get("coordinates") or [0, 0, 0, 0])),
            truth_label=data.get("truth_label", ""),
            action_fix=data.get("action_fix", ""),
            tile=data.get("tile"),
            source=data.get("source"),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "pattern_type": self.pattern_type,
            "severity": self.severity,
            "coordinates": json.loads(self.coordinates) if self.coordinates else [0, 0, 0, 0],
            "truth_label": self.truth_label,
            "action_fix": self.action_fix,
            "tile": self.tile,
            "source": self.source,
        }

    def __repr__(self):
        return f"<Finding [{self.severity}] {self.pattern_type}>"
