# -*- coding: utf-8 -*-
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from blindbox.models.NftInfo import NftInfo
from blindbox.models.OriginMetadataInfo import OriginMetadataInfo
from blindbox.models.UnrevealMetadataInfo import UnrevealMetadataInfo
from blindbox.models.typings import (
    BoxType,
    DataCorruptionException,
    InvalidInputException,
    NotFoundException,
)

logger = logging.getLogger(__name__)


def validate_box_type(box_type_id):
    try:
        return int(BoxType(int(box_type_id)))
    except (TypeError, ValueError):
        raise InvalidInputException(f"Invalid boxTypeId: {box_type_id!r}")


def validate_metadata(metadata):
    if not isinstance(metadata, dict) or not metadata:
        raise InvalidInputException("metadata must be a non-empty JSON object")
    return metadata


class MetadataManager:
    """
    metadata 读取（盲盒 / 已解盲）以及管理员写入
    """

    def __init__(self, db):
        self.db = db

    def get_token_metadata(self, token_id):
        """
        未解盲返回盲盒 metadata，已解盲返回绑定的 origin metadata
        """
        nft = self.db.session.get(NftInfo, token_id)
        if nft is None:
            raise NotFoundException(f"Token {token_id} not found")
        if nft.origin_id == 0:
            return self.get_blind_box_metadata(nft.box_type_id)
        return self.get_revealed_metadata(nft.origin_id, token_id=token_id)

    def get_blind_box_metadata(self, box_type_id):
        # 占位 metadata 必须预先写入，这里不生成默认内容
        row = self.db.session.get(UnrevealMetadataInfo, box_type_id)
        if row is None:
            raise NotFoundException(f"Blind box metadata not found for boxType {box_type_id}")
        return row.metadata_json

    def get_revealed_metadata(self, origin_id, token_id=None):
        row = self.db.session.get(OriginMetadataInfo, origin_id)
        if row is None:
            logger.error("DATA CORRUPTION: token %s references missing origin metadata %s", token_id, origin_id)
            raise DataCorruptionException(
                f"Origin metadata not found for originId {origin_id} (token {token_id})")
        return row.metadata_json

    def create_blind_box_metadata(self, box_type_id, metadata):
        box_type_id = validate_box_type(box_type_id)
        metadata = validate_metadata(metadata)
        session = self.db.session
        try:
            row = session.get(UnrevealMetadataInfo, box_type_id)
            if row is None:
                session.add(UnrevealMetadataInfo(box_type_id=box_type_id, metadata_json=metadata))
            else:
                row.metadata_json = metadata
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info("Saved blind box metadata for boxType %s", box_type_id)

    def create_origin_metadata(self, origin_id, box_type_id, metadata):
        try:
            origin_id = int(origin_id)
        except (TypeError, ValueError):
            raise InvalidInputException(f"Invalid originId: {origin_id!r}")
        if origin_id <= 0:
            raise InvalidInputException("originId must be positive")
        box_type_id = validate_box_type(box_type_id)
        metadata = validate_metadata(metadata)

        session = self.db.session
        if session.get(OriginMetadataInfo, origin_id) is not None:
            raise InvalidInputException(f"Origin metadata {origin_id} already exists")
        try:
            session.add(OriginMetadataInfo(
                origin_id=origin_id,
                box_type_id=box_type_id,
                metadata_json=metadata,
                is_assigned=False,
            ))
            session.commit()
        except IntegrityError:
            session.rollback()
            raise InvalidInputException(f"Origin metadata {origin_id} already exists")
        logger.info("Created origin metadata %s for boxType %s", origin_id, box_type_id)

    def create_origin_metadata_batch(self, box_type_id, metadata_list):
        """
        批量写入 origin metadata，单条失败只计数不中断
        :return: {"created", "skipped", "errors"}
        """
        box_type_id = validate_box_type(box_type_id)
        if not isinstance(metadata_list, list):
            raise InvalidInputException("metadataList must be an array")

        created = skipped = 0
        errors = []
        for index, item in enumerate(metadata_list):
            if not isinstance(item, dict) or not item.get("originId") or not item.get("metadata"):
                skipped += 1
                continue
            try:
                self.create_origin_metadata(item["originId"], box_type_id, item["metadata"])
                created += 1
            except InvalidInputException as e:
                skipped += 1
                errors.append({"index": index, "originId": item.get("originId"), "error": e.message})
        logger.info("Batch origin metadata for boxType %s: %s created, %s skipped", box_type_id, created, skipped)
        return {"created": created, "skipped": skipped, "errors": errors}

    def get_stats(self):
        session = self.db.session
        total = session.query(func.count(NftInfo.token_id)).scalar() or 0
        revealed = session.query(func.count(NftInfo.token_id)).filter(NftInfo.origin_id > 0).scalar() or 0

        rows = session.query(
            NftInfo.box_type_id,
            func.count(NftInfo.token_id),
        ).group_by(NftInfo.box_type_id).order_by(NftInfo.box_type_id).all()

        box_type_stats = []
        for box_type_id, count in rows:
            revealed_in_box = session.query(func.count(NftInfo.token_id)).filter(
                NftInfo.box_type_id == box_type_id,
                NftInfo.origin_id > 0,
            ).scalar() or 0
            box_type_stats.append({"boxTypeId": box_type_id, "count": count, "revealed": revealed_in_box})

        return {
            "totalNfts": total,
            "revealedNfts": revealed,
            "unrevealedNfts": total - revealed,
            "boxTypeStats": box_type_stats,
        }

    def get_origin_pool_stats(self):
        """每个盒子类型已分配 / 未分配的 origin 数量"""
        rows = self.db.session.query(
            OriginMetadataInfo.box_type_id,
            OriginMetadataInfo.is_assigned,
            func.count(OriginMetadataInfo.origin_id),
        ).group_by(OriginMetadataInfo.box_type_id, OriginMetadataInfo.is_assigned).all()

        pool = {}
        for box_type_id, is_assigned, count in rows:
            entry = pool.setdefault(box_type_id, {"boxTypeId": box_type_id, "assigned": 0, "unassigned": 0})
            entry["assigned" if is_assigned else "unassigned"] += count
        return [pool[key] for key in sorted(pool)]
