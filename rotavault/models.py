from datetime import datetime, timezone
from rotavault import db


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TierCheckpoint(db.Model):
    """Last run time per tier, persisted when checkpoints are enabled"""
    __tablename__ = 'tier_checkpoints'

    id = db.Column(db.Integer, primary_key=True)
    tier = db.Column(db.String(20), unique=True, nullable=False)
    last_run_at = db.Column(db.DateTime, nullable=False)  # Naive UTC
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return f'<TierCheckpoint {self.tier} last_run={self.last_run_at}>'


class TierRun(db.Model):
    """Tier execution history and logs"""
    __tablename__ = 'tier_runs'

    id = db.Column(db.Integer, primary_key=True)
    tier = db.Column(db.String(20), nullable=False, index=True)
    trigger = db.Column(db.String(20), nullable=False, default='manual')  # manual, scheduler, cron
    status = db.Column(db.String(20), nullable=False)  # running, success, partial_failure, failed
    started_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    succeeded_units = db.Column(db.Text)  # Comma-separated unit names
    failed_units = db.Column(db.Text)
    deleted_count = db.Column(db.Integer, default=0, nullable=False)
    error_message = db.Column(db.Text)
    logs = db.Column(db.Text)  # Detailed execution logs

    def to_dict(self):
        return {
            'id': self.id,
            'tier': self.tier,
            'trigger': self.trigger,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'succeeded_units': self.succeeded_units.split(',') if self.succeeded_units else [],
            'failed_units': self.failed_units.split(',') if self.failed_units else [],
            'deleted_count': self.deleted_count,
            'error_message': self.error_message
        }

    def __repr__(self):
        return f'<TierRun tier={self.tier} status={self.status}>'
