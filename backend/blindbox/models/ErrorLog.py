# -*- coding: utf-8 -*-
from datetime import datetime, timezone

from blindbox.models.database import db


class ErrorLog(db.Model):
    """
    错误日志模型，只记录需要运维介入的异常
    """
    __tablename__ = 'error_log'
    error_log_id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    error_type = db.Column(db.String(64), nullable=True)
    error_event = db.Column(db.Text, nullable=True)
    error_time = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
