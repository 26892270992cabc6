# -*- coding: utf-8 -*-
from datetime import datetime, timezone

from blindbox.models.database import db


class OriginMetadataInfo(db.Model):
    """解盲后的真实 metadata，一条记录最多被一个 token 绑定"""
    __tablename__ = 'origin_metadata_info'

    origin_id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    box_type_id = db.Column(db.SmallInteger, nullable=False)
    metadata_json = db.Column('metadata', db.JSON, nullable=False)
    is_assigned = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime,
                           default=lambda: datetime.now(timezone.utc),
                           nullable=False)

    __table_args__ = (
        db.Index('idx_origin_pool', 'box_type_id', 'is_assigned'),
    )
