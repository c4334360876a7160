from sqlalchemy import Column, String, Integer, Boolean, Text, DateTime, CheckConstraint, UniqueConstraint, Index
from datetime import datetime
import json
import uuid
from database import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


class Job(Base):
    """
    A unit of queued transcode work.

    Job States:
    - QUEUED: Waiting for a worker
    - RUNNING: Claimed by a worker (reset to QUEUED on restart, so delivery is at-least-once)
    - DONE: Transcode completed (or the cache was already present)
    - FAILED: Transcode failed; error_message holds the diagnostic summary

    Jobs enqueued by one request share a batch_id, which is what the
    generate endpoint hands back to the caller.
    """
    __tablename__ = 'jobs'

    id = Column(String, primary_key=True, default=generate_uuid)
    batch_id = Column(String, nullable=False, default=generate_uuid)
    kind = Column(String, nullable=False)
    state = Column(String, nullable=False, default='QUEUED')
    owner = Column(String, nullable=False)
    cache_key = Column(String, nullable=False)
    payload_json = Column(Text, nullable=False, default='{}')
    priority = Column(Integer, default=0)
    retries = Column(Integer, default=0)
    max_retries = Column(Integer, default=3)
    error_message = Column(Text)
    failure_category = Column(String, nullable=True)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_heartbeat = Column(DateTime)  # Updated while a worker holds the job

    @property
    def payload(self) -> dict:
        try:
            return json.loads(self.payload_json or '{}')
        except ValueError:
            return {}

    @payload.setter
    def payload(self, value: dict):
        self.payload_json = json.dumps(value)

    @property
    def is_pending(self) -> bool:
        return self.state in ('QUEUED', 'RUNNING')

    __table_args__ = (
        CheckConstraint("kind IN ('HLS_GENERATE')"),
        CheckConstraint("state IN ('QUEUED', 'RUNNING', 'DONE', 'FAILED')"),
        Index('idx_jobs_state', 'state', 'kind'),
        Index('idx_jobs_cache_key', 'cache_key'),
        Index('idx_jobs_batch', 'batch_id'),
    )


class WatchRegistration(Base):
    """
    A directory registered for automatic HLS generation.

    The watcher flips enabled to False (and stamps disabled_at) when the
    directory disappears; it never re-enables a registration on its own.
    """
    __tablename__ = 'watch_registrations'

    id = Column(String, primary_key=True, default=generate_uuid)
    owner = Column(String, nullable=False)
    directory = Column(Text, nullable=False)
    cache_location = Column(String, nullable=False, default='relative')
    custom_path = Column(Text, nullable=True)
    overwrite_existing = Column(Boolean, default=False)
    notify_completion = Column(Boolean, default=True)
    resolutions_json = Column(Text, nullable=False, default='[]')
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    disabled_at = Column(DateTime, nullable=True)
    last_scan_at = Column(DateTime, nullable=True)

    @property
    def resolutions(self) -> list:
        try:
            return json.loads(self.resolutions_json or '[]')
        except ValueError:
            return []

    @resolutions.setter
    def resolutions(self, value: list):
        self.resolutions_json = json.dumps(list(value))

    __table_args__ = (
        CheckConstraint("directory != ''"),
        CheckConstraint("cache_location IN ('relative', 'home', 'custom')"),
        UniqueConstraint('owner', 'directory', name='uq_watch_owner_directory'),
        Index('idx_watch_enabled', 'enabled'),
    )


class CacheMount(Base):
    """Custom cache root of an owner, probed after the relative and home locations"""
    __tablename__ = 'cache_mounts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String, nullable=False)
    path = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)  # Probe order
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('owner', 'path', name='uq_cache_mount_owner_path'),
        Index('idx_cache_mount_owner', 'owner'),
    )


class Notification(Base):
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String, nullable=False)
    event_type = Column(String, nullable=False)  # cache_generated, cache_failed
    subject = Column(Text, nullable=False)
    payload_json = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    read_at = Column(DateTime, nullable=True)

    @property
    def payload(self) -> dict:
        try:
            return json.loads(self.payload_json or '{}')
        except ValueError:
            return {}

    __table_args__ = (
        Index('idx_notifications_owner', 'owner', 'created_at'),
    )


class Setting(Base):
    __tablename__ = 'settings'

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
