from stifle import db
from flask_login import UserMixin
import secrets
import time
import uuid


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_api_token() -> str:
    return secrets.token_urlsafe(32)


def generate_server_id() -> str:
    return str(uuid.uuid4())


EVENT_TYPES = ('lock', 'unlock')


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    timezone = db.Column(db.String(64), nullable=False, default='UTC')
    api_token = db.Column(db.String(128), unique=True, nullable=False, index=True, default=generate_api_token)
    created_at = db.Column(db.BigInteger, nullable=False, default=now_ms)

    events = db.relationship('Event', back_populates='user', lazy='dynamic')
    weekly_scores = db.relationship('WeeklyScore', back_populates='user', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'timezone': self.timezone,
        }


class Event(db.Model):
    """Canonical, server-side lock/unlock event.

    `client_id` is the identifier generated on the device and is the
    idempotency key for sync. `created_at` is the server time of the sync
    round that inserted the row and drives checkpoint queries.
    """
    __tablename__ = 'event'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'client_id', name='uq_event_user_client'),
        db.CheckConstraint("event_type IN ('lock', 'unlock')", name='ck_event_type'),
        db.Index('ix_event_user_timestamp', 'user_id', 'timestamp'),
        db.Index('ix_event_user_created_at', 'user_id', 'created_at'),
    )
    id = db.Column(db.String(36), primary_key=True, default=generate_server_id)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    client_id = db.Column(db.String(64), nullable=False)
    event_type = db.Column(db.String(10), nullable=False)  # lock, unlock
    timestamp = db.Column(db.BigInteger, nullable=False)  # ms since epoch
    source = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.BigInteger, nullable=False, default=now_ms)

    user = db.relationship('User', back_populates='events')

    def to_dict(self):
        return {
            'id': self.client_id,
            'serverId': self.id,
            'eventType': self.event_type,
            'timestamp': self.timestamp,
            'source': self.source,
        }


class WeeklyScore(db.Model):
    __tablename__ = 'weekly_score'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'week_start', name='uq_weekly_score_user_week'),
    )
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    week_start = db.Column(db.Date, nullable=False, index=True)
    total_points = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    streak_count = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)  # seconds
    calculated_at = db.Column(db.BigInteger, nullable=False, default=now_ms)

    user = db.relationship('User', back_populates='weekly_scores')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'week_start': self.week_start.isoformat(),
            'total_points': float(self.total_points),
            'streak_count': self.streak_count,
            'longest_streak_seconds': self.longest_streak,
            'calculated_at': self.calculated_at,
        }
