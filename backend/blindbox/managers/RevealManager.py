# -*- coding: utf-8 -*-
import logging
import random

from eth_utils import to_checksum_address

from blindbox.models.NftInfo import NftInfo
from blindbox.models.OriginMetadataInfo import OriginMetadataInfo
from blindbox.models.typings import (
    AlreadyRevealedException,
    InvalidInputException,
    InvalidMessageException,
    InvalidSignatureException,
    NoAvailableMetadataException,
    NotFoundException,
)
from blindbox.utils.crypto import build_reveal_message, recover_personal_signer

logger = logging.getLogger(__name__)


class RevealManager:
    """
    持有人签名解盲：验证签名后，在一个事务里从对应盒子类型的未分配池中随机取一个 origin 绑定到 token
    """

    def __init__(self, db, chain, metadata_manager, app_tag="ROG Avatar", batch_size=500, rng=None):
        self.db = db
        self.chain = chain
        self.metadata_manager = metadata_manager
        self.app_tag = app_tag
        self.batch_size = batch_size
        self.rng = rng or random.SystemRandom()

    def build_message(self, token_id, address):
        return build_reveal_message(self.app_tag, token_id, address)

    def get_reveal_message(self, token_id, owner_address):
        """
        为声明的持有人生成待签名消息，token 必须已同步到库中
        """
        if self.db.session.get(NftInfo, token_id) is None:
            raise NotFoundException(f"Token {token_id} not found")
        return self.build_message(token_id, owner_address)

    def reveal(self, token_id, message, signature):
        if not isinstance(message, str) or not message:
            raise InvalidInputException("message is required")
        if not isinstance(signature, str) or not signature:
            raise InvalidInputException("signature is required")

        nft = self.db.session.get(NftInfo, token_id)
        if nft is None:
            raise NotFoundException(f"Token {token_id} not found")
        if nft.origin_id != 0:
            raise AlreadyRevealedException(f"Token {token_id} is already revealed")

        # 以链上当前持有人为准，而不是调用方声明的地址
        owner = self.chain.owner_of(token_id)
        expected = self.build_message(token_id, owner)
        if message != expected:
            raise InvalidMessageException("Message does not match the reveal message for the current owner")

        try:
            signer = recover_personal_signer(message, signature)
        except Exception as e:
            logger.info("signature recovery failed for token %s: %s", token_id, e)
            raise InvalidSignatureException("Signature could not be recovered")
        if signer != to_checksum_address(owner):
            raise InvalidSignatureException("Signature was not produced by the token owner")

        origin_id = self.assign_origin(token_id)
        logger.info("Token %s revealed by %s -> origin %s", token_id, owner, origin_id)
        return self.metadata_manager.get_revealed_metadata(origin_id, token_id=token_id)

    def assign_origin(self, token_id):
        """
        一次事务内完成：锁 token 行 -> 复查 origin_id -> 锁未分配池 -> 条件更新占用 -> 条件更新绑定
        任何失败都回滚，token 保持未解盲
        :return: 绑定的 origin_id
        """
        session = self.db.session
        try:
            nft = session.query(NftInfo).filter(NftInfo.token_id == token_id) \
                .populate_existing().with_for_update().one_or_none()
            if nft is None:
                raise NotFoundException(f"Token {token_id} not found")
            if nft.origin_id != 0:
                raise AlreadyRevealedException(f"Token {token_id} is already revealed")
            box_type_id = nft.box_type_id

            candidates = session.query(OriginMetadataInfo.origin_id).filter(
                OriginMetadataInfo.box_type_id == box_type_id,
                OriginMetadataInfo.is_assigned.is_(False),
            ).order_by(OriginMetadataInfo.origin_id).limit(self.batch_size).with_for_update(skip_locked=True).all()
            candidate_ids = [row.origin_id for row in candidates]
            self.rng.shuffle(candidate_ids)

            chosen = None
            for origin_id in candidate_ids:
                claimed = session.query(OriginMetadataInfo).filter(
                    OriginMetadataInfo.origin_id == origin_id,
                    OriginMetadataInfo.is_assigned.is_(False),
                ).update({OriginMetadataInfo.is_assigned: True}, synchronize_session=False)
                if claimed == 1:
                    chosen = origin_id
                    break
            if chosen is None:
                raise NoAvailableMetadataException(
                    f"No available origin metadata for boxType {box_type_id} (token {token_id})")

            bound = session.query(NftInfo).filter(
                NftInfo.token_id == token_id,
                NftInfo.origin_id == 0,
            ).update({NftInfo.origin_id: chosen}, synchronize_session=False)
            if bound != 1:
                raise AlreadyRevealedException(f"Token {token_id} is already revealed")

            session.commit()
        except NoAvailableMetadataException as e:
            session.rollback()
            logger.error("ORIGIN POOL EXHAUSTED: %s", e.message)
            raise
        except Exception:
            session.rollback()
            raise
        session.expire_all()
        return chosen
