# -*- coding: utf-8 -*-
from datetime import datetime, timezone

from blindbox.models.database import db


class NftInfo(db.Model):
    """已铸造 NFT 记录表 - 每个 token 一行，由链上 Transfer 事件同步"""
    __tablename__ = 'nft_info'

    token_id = db.Column(db.Integer, primary_key=True, autoincrement=False, comment='链上 tokenId')
    # 置换算法的输出，仅作记录，解盲不依赖它
    metadata_id = db.Column(db.Integer, nullable=True, comment='随机种子置换得到的 metadata 槽位')
    user_address = db.Column(db.String(42), nullable=True, index=True, comment='当前持有人地址')
    box_type_id = db.Column(db.SmallInteger, nullable=False, comment='盒子类型 0金 1红 2蓝 3公售')
    # 0 表示未解盲
    origin_id = db.Column(db.Integer, nullable=False, default=0, comment='绑定的 origin metadata')
    created_at = db.Column(db.DateTime,
                           default=lambda: datetime.now(timezone.utc),
                           nullable=False)

    __table_args__ = (
        db.Index('idx_box_type_origin', 'box_type_id', 'origin_id'),
    )

    @property
    def is_revealed(self):
        return self.origin_id != 0

    def to_dict(self):
        return {
            "tokenId": self.token_id,
            "metadataId": self.metadata_id,
            "userAddress": self.user_address,
            "boxTypeId": self.box_type_id,
            "originId": self.origin_id,
            "revealed": self.is_revealed,
            "createdAt": self.created_at.strftime("%Y-%m-%d %H:%M:%S") if self.created_at else None,
        }
