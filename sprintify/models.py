from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime, timezone

db = SQLAlchemy()


def _now():
    # SQLite keeps naive datetimes; everything stored here is UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(UserMixin, db.Model):
    """Local mirror of a Firebase account, used by Flask-Login."""
    __tablename__ = 'users'
    id = db.Column(db.String(128), primary_key=True)  # Firebase uid
    email = db.Column(db.String(120), nullable=False, index=True)
    display_name = db.Column(db.String(120))
    user_type = db.Column(db.String(20), default='normal', nullable=False)
    refresh_token = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=_now)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)

    settings = db.relationship('UserSettings', backref='user', uselist=False, cascade='all, delete-orphan')
    cached_sprints = db.relationship('CachedSprint', backref='owner', lazy='dynamic', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<User {self.email}>'


class UserSettings(db.Model):
    __tablename__ = 'user_settings'
    user_id = db.Column(db.String(128), db.ForeignKey('users.id'), primary_key=True)

    # notifications
    email_notifications = db.Column(db.Boolean, default=True)
    push_notifications = db.Column(db.Boolean, default=False)
    daily_reminder = db.Column(db.Boolean, default=True)
    deadline_reminder = db.Column(db.Boolean, default=True)
    milestone_reminder = db.Column(db.Boolean, default=True)
    reminder_time = db.Column(db.String(5), default='09:00')

    # preferences
    theme = db.Column(db.String(10), default='system')
    language = db.Column(db.String(10), default='en-US')
    timezone = db.Column(db.String(64), default='UTC')
    date_format = db.Column(db.String(20), default='YYYY-MM-DD')
    time_format = db.Column(db.String(3), default='24h')

    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now)

    def __repr__(self):
        return f'<UserSettings {self.user_id}>'


class CachedSprint(db.Model):
    """Last known copy of a sprint document, tasks and milestones included."""
    __tablename__ = 'cached_sprints'
    id = db.Column(db.String(128), primary_key=True)
    user_id = db.Column(db.String(128), db.ForeignKey('users.id'), nullable=False, index=True)
    payload = db.Column(db.Text, nullable=False)
    server_updated_at = db.Column(db.DateTime)
    cached_at = db.Column(db.DateTime, default=_now, onupdate=_now)

    def __repr__(self):
        return f'<CachedSprint {self.id}>'
