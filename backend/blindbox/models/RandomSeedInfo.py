# -*- coding: utf-8 -*-
from datetime import datetime, timezone

from blindbox.models.database import db


class RandomSeedInfo(db.Model):
    """随机种子同步记录，只追加；mappings_generated 防止重复生成映射"""
    __tablename__ = 'random_seed_info'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    # uint256 十进制字符串，最长 78 位
    random_seed = db.Column(db.String(78), nullable=False, unique=True)
    block_number = db.Column(db.BigInteger, nullable=True)
    transaction_hash = db.Column(db.String(66), nullable=True)
    synced_at = db.Column(db.DateTime,
                          default=lambda: datetime.now(timezone.utc),
                          nullable=False)
    mappings_generated = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "randomSeed": self.random_seed,
            "blockNumber": self.block_number,
            "transactionHash": self.transaction_hash,
            "syncedAt": self.synced_at.isoformat() if self.synced_at else None,
            "mappingsGenerated": self.mappings_generated,
        }
