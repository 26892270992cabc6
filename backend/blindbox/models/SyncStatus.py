# -*- coding: utf-8 -*-
from datetime import datetime, timezone

from blindbox.models.database import db

TRANSFER_EVENTS = 'transfer_events'


class SyncStatus(db.Model):
    """链上事件同步进度，每个同步流一行"""
    __tablename__ = 'sync_status'

    sync_type = db.Column(db.String(32), primary_key=True)
    last_processed_block = db.Column(db.BigInteger, nullable=False, default=0)
    updated_at = db.Column(db.DateTime,
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))
