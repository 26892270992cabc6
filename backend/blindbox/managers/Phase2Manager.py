# -*- coding: utf-8 -*-
import logging

from eth_account import Account
from eth_utils import to_checksum_address
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from web3 import Web3

from blindbox.managers.MetadataManager import validate_box_type
from blindbox.models.Phase2Holder import Phase2Holder
from blindbox.models.typings import (
    ConfigOperationException,
    InvalidInputException,
    NotFoundException,
)
from blindbox.utils.crypto import sign_phase2, verify_phase2

logger = logging.getLogger(__name__)


def normalize_address(address):
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidInputException(f"Invalid address: {address!r}")
    return to_checksum_address(address)


class Phase2Manager:
    """
    Phase2 白名单与铸造签名
    签名私钥只在构造时加载一次，不打印、不返回
    """

    def __init__(self, db, signer_private_key=None):
        self.db = db
        if signer_private_key:
            self._signer = Account.from_key(signer_private_key)
        else:
            logger.warning("signer private key not configured, phase2 signatures cannot be issued")
            self._signer = None

    @property
    def signer_address(self):
        return self._signer.address if self._signer else None

    def _require_signer(self):
        if self._signer is None:
            raise ConfigOperationException("Signer private key is not configured")
        return self._signer

    def is_eligible(self, address, box_type_id):
        address = normalize_address(address)
        box_type_id = validate_box_type(box_type_id)
        holder = self.db.session.query(Phase2Holder).filter_by(
            user_address=address, box_type_id=box_type_id).first()
        return holder is not None

    def find_holder(self, address):
        """铸造分类用：该地址的第一条白名单记录"""
        return self.db.session.query(Phase2Holder).filter_by(
            user_address=to_checksum_address(address)).order_by(Phase2Holder.id).first()

    def add_holder(self, address, box_type_id, token_id=None):
        address = normalize_address(address)
        box_type_id = validate_box_type(box_type_id)
        holder = Phase2Holder(user_address=address, box_type_id=box_type_id)
        if token_id is not None:
            try:
                holder.id = int(token_id)
            except (TypeError, ValueError):
                raise InvalidInputException(f"Invalid tokenId: {token_id!r}")
            if holder.id <= 0:
                raise InvalidInputException("tokenId must be positive")

        session = self.db.session
        try:
            session.add(holder)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise InvalidInputException(f"Phase2 entry for token {token_id} already exists")
        logger.info("Added Phase2 holder %s for boxType %s (id %s)", address, box_type_id, holder.id)
        return holder

    def add_holders_batch(self, holders):
        """
        批量加入白名单，格式错误的条目跳过并计数
        :param holders: [{"userAddress", "boxTypeId", "tokenId"?}]
        :return: {"added", "skipped", "errors"}
        """
        if not isinstance(holders, list):
            raise InvalidInputException("holders must be an array")
        added = skipped = 0
        errors = []
        for index, item in enumerate(holders):
            if not isinstance(item, dict):
                skipped += 1
                errors.append({"index": index, "error": "entry must be an object"})
                continue
            try:
                self.add_holder(item.get("userAddress"), item.get("boxTypeId"), item.get("tokenId"))
                added += 1
            except InvalidInputException as e:
                skipped += 1
                errors.append({"index": index, "userAddress": item.get("userAddress"), "error": e.message})
        logger.info("Batch Phase2 holders: %s added, %s skipped", added, skipped)
        return {"added": added, "skipped": skipped, "errors": errors}

    def issue_signature(self, address, token_id, box_type_id):
        """
        签发 Phase2 铸造签名并写回白名单记录
        hash = keccak256(abi.encodePacked(address, uint256 tokenId))，再做 EIP-191 包装
        """
        signer = self._require_signer()
        address = normalize_address(address)
        box_type_id = validate_box_type(box_type_id)
        try:
            token_id = int(token_id)
        except (TypeError, ValueError):
            raise InvalidInputException(f"Invalid tokenId: {token_id!r}")

        session = self.db.session
        # 行上的签名必须是对 (user_address, id) 的签名
        holder = session.query(Phase2Holder).filter_by(
            id=token_id, user_address=address, box_type_id=box_type_id).first()
        if holder is None:
            raise NotFoundException(
                f"{address} has no Phase2 entry for token {token_id} in boxType {box_type_id}")

        signature = sign_phase2(address, token_id, signer)
        try:
            holder.signature = signature
            session.commit()
        except Exception:
            session.rollback()
            raise
        return signature

    def verify_signature(self, address, token_id, signature, expected_signer=None):
        expected_signer = expected_signer or self.signer_address
        if not expected_signer:
            return False
        return verify_phase2(address, token_id, signature, expected_signer)

    def issue_pending_signatures(self, only_missing=True):
        """
        为白名单批量签名（id 即 tokenId），单条失败只计数
        :return: {"signed", "failed"}
        """
        self._require_signer()
        query = self.db.session.query(Phase2Holder)
        if only_missing:
            query = query.filter(Phase2Holder.signature.is_(None))
        holders = query.order_by(Phase2Holder.id).all()

        signed = failed = 0
        for holder in holders:
            try:
                signature = self.issue_signature(holder.user_address, holder.id, holder.box_type_id)
                if not self.verify_signature(holder.user_address, holder.id, signature):
                    logger.error("self-check failed for Phase2 signature of %s #%s", holder.user_address, holder.id)
                    failed += 1
                    continue
                signed += 1
            except Exception as e:
                logger.error("Failed to sign Phase2 holder %s #%s: %s", holder.user_address, holder.id, e)
                failed += 1
        logger.info("Phase2 signatures issued: %s signed, %s failed", signed, failed)
        return {"signed": signed, "failed": failed}

    def get_holder_mint_info(self, address):
        """
        顶层字段是 id 最小的已签名记录，一个地址有多条时全部放在 signatures 里
        """
        address = normalize_address(address)
        holders = self.db.session.query(Phase2Holder).filter(
            Phase2Holder.user_address == address,
            Phase2Holder.signature.isnot(None),
        ).order_by(Phase2Holder.id).all()
        if not holders:
            raise NotFoundException("No signatures found for this Phase2 holder")
        info = holders[0].to_dict()
        info["signatures"] = [holder.to_dict() for holder in holders]
        return info

    def get_holder_counts(self):
        rows = self.db.session.query(
            Phase2Holder.box_type_id,
            func.count(Phase2Holder.id),
        ).group_by(Phase2Holder.box_type_id).order_by(Phase2Holder.box_type_id).all()
        return [{"boxTypeId": box_type_id, "count": count} for box_type_id, count in rows]
