# -*- coding: utf-8 -*-
import hmac
import logging
from datetime import datetime, timezone
from functools import wraps

from flask import Flask, current_app, jsonify, request
from flask_apscheduler import APScheduler
from flask_cors import CORS, cross_origin

from blindbox.managers.Config import SCHEDULER_API_ENABLED, SCHEDULER_TIMEZONE, Config, parse_iso_timestamp
from blindbox.managers.MappingManager import MappingManager
from blindbox.managers.MetadataManager import MetadataManager, validate_box_type
from blindbox.managers.NftManager import NftManager
from blindbox.managers.Phase2Manager import Phase2Manager, normalize_address
from blindbox.managers.RevealManager import RevealManager
from blindbox.models import db
from blindbox.models.typings import (
    BOX_TYPE_NAMES,
    CustomException,
    ForbiddenException,
    InvalidInputException,
    UnauthorizedException,
)
from blindbox.services.ChainService import ChainService
from blindbox.services.NftSyncService import NftSyncService
from blindbox.services.SeedWatcher import SeedWatcher

logger = logging.getLogger(__name__)

VERSION = "2.0.0"


class BlindBoxServices:
    """
    各组件的装配结果，挂在 app.extensions['blindbox'] 上
    """

    def __init__(self, app, settings, chain=None, scheduler=None):
        self.settings = settings
        self.chain = chain or ChainService(settings["rpc_url"], settings["contract_address"],
                                           timeout=settings["rpc_timeout"])
        self.metadata_manager = MetadataManager(db)
        self.phase2_manager = Phase2Manager(db, settings["signer_private_key"])
        self.reveal_manager = RevealManager(db, self.chain, self.metadata_manager,
                                            app_tag=settings["reveal_app_tag"],
                                            batch_size=settings["reveal_batch_size"])
        self.mapping_manager = MappingManager(db, self.chain)
        self.nft_manager = NftManager(db, self.phase2_manager,
                                      public_start_time=parse_iso_timestamp(settings["public_start_time"]))
        self.seed_watcher = SeedWatcher(app, self.chain, self.mapping_manager, scheduler=scheduler,
                                        check_interval=settings["random_seed_check_interval"])
        self.nft_sync = NftSyncService(app, self.chain, self.nft_manager, scheduler=scheduler,
                                       poll_interval=settings["transfer_poll_interval"],
                                       catchup_interval=settings["transfer_catchup_interval"],
                                       block_batch_size=settings["transfer_block_batch_size"],
                                       start_block=settings["transfer_start_block"])

    def mint_config(self):
        s = self.settings
        return {
            "chainId": s["chain_id"],
            "maxSupply": s["max_supply"],
            "nftAddress": self.chain.contract_address or s["contract_address"],
            "soulboundStartTime": s["soulbound_start_time"],
            "soulboundEndTime": s["soulbound_end_time"],
            "publicStartTime": s["public_start_time"],
            "publicEndTime": s["public_end_time"],
            "mintPrice": s["mint_price"],
        }


scheduler = APScheduler()


def services():
    return current_app.extensions['blindbox']


def create_app(overrides=None, chain=None, start_watchers=None):
    """
    :param overrides: 覆盖 Config 的配置项，测试用
    :param chain: 替换链上客户端，测试用
    :param start_watchers: 是否启动定时任务，默认取 scheduler_enabled
    """
    settings = Config.as_dict()
    settings.update(overrides or {})

    app = Flask(__name__)
    CORS(app)
    app.config['SQLALCHEMY_DATABASE_URI'] = settings["database_url"]
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    if settings["database_url"].startswith("mysql"):
        app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {"pool_pre_ping": True, "pool_recycle": 3600, "pool_timeout": 10}
    app.config['SCHEDULER_API_ENABLED'] = SCHEDULER_API_ENABLED
    app.config['SCHEDULER_TIMEZONE'] = SCHEDULER_TIMEZONE

    db.init_app(app)
    with app.app_context():
        db.create_all()

    if start_watchers is None:
        start_watchers = bool(settings["scheduler_enabled"])
    job_scheduler = None
    if start_watchers:
        scheduler.init_app(app)
        job_scheduler = scheduler
    app.extensions['blindbox'] = BlindBoxServices(app, settings, chain=chain, scheduler=job_scheduler)

    register_error_handlers(app)
    register_routes(app)

    if start_watchers:
        if not scheduler.running:
            scheduler.start()
        box = app.extensions['blindbox']
        box.seed_watcher.start()
        box.nft_sync.start()
    return app


def register_error_handlers(app):

    @app.errorhandler(CustomException)
    def handle_custom_exception(error):
        db.session.rollback()
        if error.http_status >= 500:
            logger.error("%s: %s", type(error).__name__, error.message)
        if error.recorded:
            error.record_error()
        return jsonify({"status": "error", "data": {}, "message": error.message}), error.http_status


def admin_required(f):
    """
    校验 X-Admin-Key；未配置密钥时只在非生产环境放行
    """
    @wraps(f)
    def decorator(*args, **kwargs):
        settings = services().settings
        admin_key = settings.get("admin_api_key") or ""
        if not admin_key:
            if settings.get("environment") == "production":
                raise UnauthorizedException("Admin API key not configured")
            logger.warning("ADMIN_API_KEY not configured - admin endpoints are unprotected")
            return f(*args, **kwargs)

        provided = request.headers.get('X-Admin-Key')
        if not provided:
            raise UnauthorizedException("Admin API key required. Please provide X-Admin-Key header.")
        if not hmac.compare_digest(provided.encode(), admin_key.encode()):
            logger.warning("Invalid admin API key attempt from %s", request.remote_addr or "unknown")
            raise ForbiddenException("Invalid admin API key")
        logger.info("Admin access granted from %s to %s %s", request.remote_addr, request.method, request.path)
        return f(*args, **kwargs)

    return decorator


def parse_token_id(value):
    try:
        token_id = int(value)
    except (TypeError, ValueError):
        raise InvalidInputException("Invalid token ID")
    max_supply = services().settings.get("max_supply")
    if token_id < 1 or (max_supply and token_id > int(max_supply)):
        raise InvalidInputException("Invalid token ID")
    return token_id


def request_json():
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        raise InvalidInputException("JSON object body required")
    return data


def ok(data=None, message="OK"):
    return jsonify({"status": "success", "data": data if data is not None else {}, "message": message})


def register_routes(app):

    @app.route('/', methods=['GET'])
    def index():
        return jsonify({
            "message": "ROG Blind Box Metadata API is running!",
            "version": VERSION,
            "boxTypes": {int(box_type): name for box_type, name in BOX_TYPE_NAMES.items()},
        })

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
        })

    # ==================== metadata ====================

    @app.route('/metadata/<token_id>', methods=['GET'])
    @cross_origin()
    def get_metadata(token_id):
        # ERC-721 tokenURI 直接返回 metadata 本体
        return jsonify(services().metadata_manager.get_token_metadata(parse_token_id(token_id)))

    @app.route('/metadata/reveal/message', methods=['GET'])
    @cross_origin()
    def get_reveal_message():
        token_id = parse_token_id(request.args.get('tokenId'))
        owner_address = normalize_address(request.args.get('ownerAddress'))
        message = services().reveal_manager.get_reveal_message(token_id, owner_address)
        return ok({"message": message})

    @app.route('/metadata/reveal/<token_id>', methods=['POST'])
    @cross_origin()
    def reveal_token(token_id):
        token_id = parse_token_id(token_id)
        data = request_json()
        metadata = services().reveal_manager.reveal(token_id, data.get("message"), data.get("signature"))
        return ok(metadata, message="Token revealed")

    # ==================== public api ====================

    @app.route('/api/stats', methods=['GET'])
    @cross_origin()
    def get_stats():
        return ok(services().metadata_manager.get_stats())

    @app.route('/api/mint/config', methods=['GET'])
    @cross_origin()
    def get_mint_config():
        return ok(services().mint_config())

    @app.route('/api/mint/soulbound/<address>', methods=['GET'])
    @cross_origin()
    def get_soulbound_mint_info(address):
        return ok(services().phase2_manager.get_holder_mint_info(address))

    @app.route('/api/nft', methods=['GET'])
    @cross_origin()
    def get_supply():
        box = services()
        max_supply = int(box.settings["max_supply"])
        total_supply = box.chain.get_total_supply()
        return ok({"totalSupply": max_supply - total_supply, "maxSupply": max_supply})

    @app.route('/api/phase2/<address>/<box_type_id>', methods=['GET'])
    @cross_origin()
    def check_phase2(address, box_type_id):
        box_type_id = validate_box_type(box_type_id)
        eligible = services().phase2_manager.is_eligible(address, box_type_id)
        return ok({"address": normalize_address(address), "boxTypeId": box_type_id, "isPhase2Holder": eligible})

    # ==================== admin ====================

    @app.route('/admin/random-seed-status', methods=['GET'])
    @admin_required
    def admin_random_seed_status():
        return ok(services().mapping_manager.get_seed_status())

    @app.route('/admin/sync-randomseed', methods=['POST'])
    @admin_required
    def admin_sync_random_seed():
        result = services().seed_watcher.force_check()
        return ok({"randomSeed": result["randomSeed"], "success": result["success"]}, message=result["message"])

    @app.route('/admin/blind-box-metadata', methods=['POST'])
    @admin_required
    def admin_create_blind_box_metadata():
        data = request_json()
        if data.get("boxTypeId") is None or not data.get("metadata"):
            raise InvalidInputException("boxTypeId and metadata are required")
        services().metadata_manager.create_blind_box_metadata(data["boxTypeId"], data["metadata"])
        return ok(message=f"Created blind box metadata for boxType {data['boxTypeId']}")

    @app.route('/admin/origin-metadata', methods=['POST'])
    @admin_required
    def admin_create_origin_metadata():
        data = request_json()
        if not data.get("originId") or data.get("boxTypeId") is None or not data.get("metadata"):
            raise InvalidInputException("originId, boxTypeId and metadata are required")
        services().metadata_manager.create_origin_metadata(data["originId"], data["boxTypeId"], data["metadata"])
        return ok(message=f"Created origin metadata for originId {data['originId']}")

    @app.route('/admin/batch-origin-metadata', methods=['POST'])
    @admin_required
    def admin_create_batch_origin_metadata():
        data = request_json()
        if data.get("boxTypeId") is None or not isinstance(data.get("metadataList"), list):
            raise InvalidInputException("boxTypeId and metadataList array are required")
        result = services().metadata_manager.create_origin_metadata_batch(data["boxTypeId"], data["metadataList"])
        return ok(result, message=f"Created {result['created']} origin metadata entries for boxType {data['boxTypeId']}")

    @app.route('/admin/phase2-holder', methods=['POST'])
    @admin_required
    def admin_add_phase2_holder():
        data = request_json()
        if not data.get("userAddress") or data.get("boxTypeId") is None:
            raise InvalidInputException("userAddress and boxTypeId are required")
        holder = services().phase2_manager.add_holder(data["userAddress"], data["boxTypeId"], data.get("tokenId"))
        return ok(holder.to_dict(), message=f"Added Phase2 holder: {holder.user_address} for boxType {holder.box_type_id}")

    @app.route('/admin/batch-phase2-holders', methods=['POST'])
    @admin_required
    def admin_add_batch_phase2_holders():
        data = request_json()
        if not isinstance(data.get("holders"), list):
            raise InvalidInputException("holders array is required")
        result = services().phase2_manager.add_holders_batch(data["holders"])
        return ok(result, message=f"Added {result['added']} Phase2 holders")

    @app.route('/admin/phase2-signatures', methods=['POST'])
    @admin_required
    def admin_issue_phase2_signatures():
        data = request.get_json(force=True, silent=True) or {}
        phase2 = services().phase2_manager
        if data.get("userAddress"):
            if data.get("tokenId") is None or data.get("boxTypeId") is None:
                raise InvalidInputException("tokenId and boxTypeId are required with userAddress")
            signature = phase2.issue_signature(data["userAddress"], data["tokenId"], data["boxTypeId"])
            return ok({"signature": signature, "signer": phase2.signer_address})
        result = phase2.issue_pending_signatures(only_missing=not data.get("resign", False))
        result["signer"] = phase2.signer_address
        return ok(result, message=f"Signed {result['signed']} Phase2 holders")

    @app.route('/admin/detailed-stats', methods=['GET'])
    @admin_required
    def admin_detailed_stats():
        box = services()
        stats = box.metadata_manager.get_stats()
        stats["randomSeedInfo"] = box.mapping_manager.list_seeds()
        stats["phase2HoldersCount"] = box.phase2_manager.get_holder_counts()
        stats["originPool"] = box.metadata_manager.get_origin_pool_stats()
        return ok(stats)

    @app.route('/admin/sync/status', methods=['GET'])
    @admin_required
    def admin_sync_status():
        return ok(services().nft_sync.get_sync_status())

    @app.route('/admin/sync/start', methods=['POST'])
    @admin_required
    def admin_sync_start():
        started = services().nft_sync.start()
        return ok(services().nft_sync.status(), message="Transfer monitoring started" if started
                  else "Transfer monitoring already running or not configured")

    @app.route('/admin/sync/stop', methods=['POST'])
    @admin_required
    def admin_sync_stop():
        services().nft_sync.stop()
        return ok(services().nft_sync.status(), message="Transfer monitoring stopped")

    @app.route('/admin/sync/historical', methods=['POST'])
    @admin_required
    def admin_sync_historical():
        data = request.get_json(force=True, silent=True) or {}
        try:
            from_block = int(data["fromBlock"]) if data.get("fromBlock") is not None else None
            to_block = int(data["toBlock"]) if data.get("toBlock") is not None else None
        except (TypeError, ValueError):
            raise InvalidInputException("fromBlock and toBlock must be integers")
        if from_block is not None and to_block is not None and from_block > to_block:
            raise InvalidInputException("fromBlock must not be greater than toBlock")
        result = services().nft_sync.sync_historical_events(from_block, to_block)
        return ok(result, message="Historical sync completed")

    @app.route('/admin/seed-monitor/status', methods=['GET'])
    @admin_required
    def admin_seed_monitor_status():
        return ok(services().seed_watcher.status())

    @app.route('/admin/seed-monitor/start', methods=['POST'])
    @admin_required
    def admin_seed_monitor_start():
        services().seed_watcher.start()
        return ok(services().seed_watcher.status())

    @app.route('/admin/seed-monitor/stop', methods=['POST'])
    @admin_required
    def admin_seed_monitor_stop():
        services().seed_watcher.stop()
        return ok(services().seed_watcher.status())
