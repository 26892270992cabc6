# -*- coding: utf-8 -*-
from datetime import datetime, timezone

from blindbox.models.database import db


class UnrevealMetadataInfo(db.Model):
    """盲盒占位 metadata，每个盒子类型一条，管理员可覆盖"""
    __tablename__ = 'unreveal_metadata_info'

    box_type_id = db.Column(db.SmallInteger, primary_key=True, autoincrement=False)
    metadata_json = db.Column('metadata', db.JSON, nullable=False)
    created_at = db.Column(db.DateTime,
                           default=lambda: datetime.now(timezone.utc),
                           nullable=False)
    updated_at = db.Column(db.DateTime,
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))
