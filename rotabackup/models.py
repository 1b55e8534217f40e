from datetime import datetime
from rotabackup import db


class RunRecord(db.Model):
    """One invocation of the backup lifecycle"""
    __tablename__ = 'runs'

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(20), nullable=False)  # running, success, partial, failed
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    period_tag = db.Column(db.String(64))
    error_count = db.Column(db.Integer, default=0, nullable=False)
    error_message = db.Column(db.Text)
    logs = db.Column(db.Text)  # Detailed execution logs

    # Relationship
    archives = db.relationship('ArchiveRecord', back_populates='run', cascade='all, delete-orphan', lazy='dynamic')

    def __repr__(self):
        return f'<RunRecord id={self.id} status={self.status}>'


class ArchiveRecord(db.Model):
    """A rotated period and what became of its artifact"""
    __tablename__ = 'archives'

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.Integer, db.ForeignKey('runs.id'), nullable=False)
    period_tag = db.Column(db.String(64), nullable=False)
    archive_name = db.Column(db.String(255))
    size_bytes = db.Column(db.BigInteger)
    outcome = db.Column(db.String(20), nullable=False)  # transferred, retained, compression_failed, transfer_failed
    remote_path = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    # Relationship
    run = db.relationship('RunRecord', back_populates='archives')

    def __repr__(self):
        return f'<ArchiveRecord {self.period_tag} outcome={self.outcome}>'
