# -*- coding: utf-8 -*-
import logging

from sqlalchemy.exc import IntegrityError

from blindbox.models.NftInfo import NftInfo
from blindbox.models.RandomSeedInfo import RandomSeedInfo
from blindbox.utils.crypto import derive_permutation_params, permute

logger = logging.getLogger(__name__)


class MappingManager:
    """
    随机种子记录与 tokenId -> metadataId 映射生成
    映射只作为参考数据写入 metadata_id，解盲分配走 RevealManager 的随机池
    """

    def __init__(self, db, chain):
        self.db = db
        self.chain = chain

    def record_seed(self, random_seed, block_number=None, tx_hash=None):
        """
        记录种子，同一个种子只保存一次；已存在时补全区块信息
        :return: RandomSeedInfo
        """
        session = self.db.session
        seed_key = str(int(random_seed))
        row = session.query(RandomSeedInfo).filter_by(random_seed=seed_key).first()
        try:
            if row is None:
                row = RandomSeedInfo(random_seed=seed_key, block_number=block_number, transaction_hash=tx_hash)
                session.add(row)
                session.commit()
                logger.info("Synced new random seed: %s", seed_key)
            elif block_number is not None and row.block_number is None:
                row.block_number = block_number
                row.transaction_hash = tx_hash
                session.commit()
        except IntegrityError:
            # 其他实例同时写入了同一个种子
            session.rollback()
            row = session.query(RandomSeedInfo).filter_by(random_seed=seed_key).first()
        return row

    def sync_random_seed_from_contract(self):
        """
        :return: 已揭示的种子；未揭示或为 0 时返回 None
        """
        random_seed, is_revealed = self.chain.get_random_seed_status()
        if not is_revealed or random_seed == 0:
            logger.info("Random seed not yet revealed on contract")
            return None
        self.record_seed(random_seed)
        return random_seed

    def has_generated_mappings(self):
        return self.db.session.query(RandomSeedInfo).filter_by(mappings_generated=True).first() is not None

    def generate_all_mappings(self, random_seed, max_supply):
        """
        对所有已存在的 NFT 写入 metadata_id，并把该种子标记为已生成
        同一个种子只会执行一次，重复调用直接返回 False
        """
        a, b = derive_permutation_params(int(random_seed), int(max_supply))
        seed_key = str(int(random_seed))
        self.record_seed(random_seed)

        session = self.db.session
        try:
            seed_row = session.query(RandomSeedInfo).filter_by(
                random_seed=seed_key).with_for_update().one()
            if seed_row.mappings_generated:
                session.rollback()
                logger.info("Mappings already generated for seed %s", seed_key)
                return False

            nfts = session.query(NftInfo).order_by(NftInfo.token_id).all()
            for nft in nfts:
                nft.metadata_id = permute(nft.token_id - 1, a, b, int(max_supply)) + 1
            seed_row.mappings_generated = True
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info("Generated mappings for %s NFTs with seed %s", len(nfts), seed_key)
        return True

    def list_seeds(self):
        rows = self.db.session.query(RandomSeedInfo).order_by(RandomSeedInfo.synced_at.desc()).all()
        return [row.to_dict() for row in rows]

    def get_seed_status(self):
        """合约状态与库内状态合并视图"""
        random_seed, is_revealed = self.chain.get_random_seed_status()
        row = self.db.session.query(RandomSeedInfo).filter_by(random_seed=str(random_seed)).first()
        return {
            "randomSeed": str(random_seed),
            "isRevealed": is_revealed,
            "mappingsGenerated": bool(row and row.mappings_generated),
            "syncedAt": row.synced_at.isoformat() if row and row.synced_at else None,
        }
