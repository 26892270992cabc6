# -*- coding: utf-8 -*-
import logging

from eth_utils import to_checksum_address
from sqlalchemy.exc import IntegrityError

from blindbox.models.NftInfo import NftInfo
from blindbox.models.SyncStatus import SyncStatus, TRANSFER_EVENTS
from blindbox.models.typings import BoxType

logger = logging.getLogger(__name__)


class NftManager:
    """
    NFT 持有记录的写入：铸造分类、铸造 upsert、转账更新、同步进度
    """

    def __init__(self, db, phase2_manager, public_start_time=None):
        self.db = db
        self.phase2_manager = phase2_manager
        # unix 秒
        self.public_start_time = public_start_time

    def get_nft(self, token_id):
        return self.db.session.get(NftInfo, token_id)

    def classify_box_type(self, to_address, block_timestamp=None):
        """
        优先级：
        1. 区块时间 >= 公售开始时间 -> 公售盒
        2. 白名单地址 -> 白名单记录的盒子类型
        3. 其他 -> 公售盒
        区块时间拿不到时跳过第 1 条
        """
        if block_timestamp is not None and self.public_start_time is not None \
                and block_timestamp >= self.public_start_time:
            return int(BoxType.PUBLIC)
        holder = self.phase2_manager.find_holder(to_address)
        if holder is not None:
            return holder.box_type_id
        return int(BoxType.PUBLIC)

    def upsert_minted_nft(self, token_id, owner_address, box_type_id):
        """
        铸造事件写库，重复事件只更新持有人和盒子类型，不会动 origin_id
        :return: "created" / "updated" / "unchanged"
        """
        owner_address = to_checksum_address(owner_address)
        session = self.db.session
        for attempt in range(2):
            try:
                nft = session.get(NftInfo, token_id)
                if nft is None:
                    session.add(NftInfo(
                        token_id=token_id,
                        metadata_id=None,
                        user_address=owner_address,
                        box_type_id=box_type_id,
                        origin_id=0,
                    ))
                    session.commit()
                    logger.info("Created NFT %s: owner=%s, boxTypeId=%s", token_id, owner_address, box_type_id)
                    return "created"
                if nft.user_address == owner_address and nft.box_type_id == box_type_id:
                    return "unchanged"
                nft.user_address = owner_address
                nft.box_type_id = box_type_id
                session.commit()
                logger.info("Updated NFT %s: owner=%s, boxTypeId=%s", token_id, owner_address, box_type_id)
                return "updated"
            except IntegrityError:
                # 另一个实例先插入了，按更新重试一次
                session.rollback()
                if attempt == 1:
                    raise
            except Exception:
                session.rollback()
                raise

    def transfer_ownership(self, token_id, from_address, to_address):
        """
        只有当前持有人仍是 from 时才更新，防止乱序事件覆盖
        :return: 是否更新
        """
        session = self.db.session
        try:
            updated = session.query(NftInfo).filter(
                NftInfo.token_id == token_id,
                NftInfo.user_address == to_checksum_address(from_address),
            ).update({NftInfo.user_address: to_checksum_address(to_address)}, synchronize_session=False)
            session.commit()
        except Exception:
            session.rollback()
            raise
        if updated:
            logger.info("Updated owner for token %s: %s -> %s", token_id, from_address, to_address)
        else:
            logger.info("No owner update for token %s (owner mismatch or not found)", token_id)
        return updated > 0

    def get_last_processed_block(self):
        row = self.db.session.get(SyncStatus, TRANSFER_EVENTS)
        return row.last_processed_block if row else None

    def update_last_processed_block(self, block_number):
        """只前进不后退"""
        session = self.db.session
        try:
            row = session.query(SyncStatus).filter_by(sync_type=TRANSFER_EVENTS).with_for_update().first()
            if row is None:
                session.add(SyncStatus(sync_type=TRANSFER_EVENTS, last_processed_block=block_number))
            elif block_number > row.last_processed_block:
                row.last_processed_block = block_number
            session.commit()
        except IntegrityError:
            session.rollback()
            return self.update_last_processed_block(block_number)
        except Exception:
            session.rollback()
            raise
