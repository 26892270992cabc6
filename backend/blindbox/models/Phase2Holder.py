# -*- coding: utf-8 -*-
from datetime import datetime, timezone

from blindbox.models.database import db


class Phase2Holder(db.Model):
    """Phase2 白名单，id 与预留的 tokenId 一致"""
    __tablename__ = 'phase2_holders'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_address = db.Column(db.String(42), nullable=False, index=True)
    box_type_id = db.Column(db.SmallInteger, nullable=False)
    signature = db.Column(db.String(300), nullable=True, comment='EIP-191 签名，签发后填入')
    created_at = db.Column(db.DateTime,
                           default=lambda: datetime.now(timezone.utc),
                           nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "tokenId": self.id,
            "userAddress": self.user_address,
            "boxTypeId": self.box_type_id,
            "signature": self.signature,
        }
