# -*- coding: utf-8 -*-
"""
Transfer 事件同步

两条通道：
    push: web3 日志过滤器，按 transfer_poll_interval 拉取新日志
    pull: 按区块区间的历史补齐，按 transfer_catchup_interval 执行
过滤器失效时重建过滤器并走一次历史补齐，因此持久化的 last_processed_block 之前的事件都已处理过
"""
import logging

from blindbox.models.typings import UpstreamUnavailableException
from blindbox.services.ChainService import ZERO_ADDRESS

logger = logging.getLogger(__name__)

POLL_JOB_ID = 'transfer_event_poll'
CATCHUP_JOB_ID = 'transfer_event_catchup'


class NftSyncService:

    def __init__(self, app, chain, nft_manager, scheduler=None, poll_interval=5, catchup_interval=300,
                 block_batch_size=2000, start_block=None):
        self.app = app
        self.chain = chain
        self.nft_manager = nft_manager
        self.scheduler = scheduler
        self.poll_interval = poll_interval
        self.catchup_interval = catchup_interval
        self.block_batch_size = max(1, int(block_batch_size))
        self.start_block = start_block
        self.is_listening = False
        self.last_processed_block = 0
        self._transfer_filter = None

    def start(self):
        """
        开启同步，重复调用直接返回 False
        """
        if self.is_listening:
            logger.info("Transfer monitoring is already running")
            return False
        if not self.chain.is_configured():
            logger.warning("Blockchain service not configured, transfer monitoring disabled")
            return False

        self.is_listening = True
        with self.app.app_context():
            try:
                self._initialize_last_processed_block()
                self._open_push_channel()
            except UpstreamUnavailableException as e:
                # 下一次 poll 会重试
                logger.warning("Transfer monitoring started without push channel: %s", e.message)

        if self.scheduler is not None:
            self.scheduler.add_job(id=POLL_JOB_ID, func=self.poll_new_events, trigger='interval',
                                   seconds=self.poll_interval, max_instances=1, replace_existing=True)
            self.scheduler.add_job(id=CATCHUP_JOB_ID, func=self.run_catchup, trigger='interval',
                                   seconds=self.catchup_interval, max_instances=1, replace_existing=True)
        logger.info("Transfer event monitoring started")
        return True

    def stop(self):
        """停止后正在执行的任务会跑完，写库均为幂等操作"""
        if self.scheduler is not None:
            for job_id in (POLL_JOB_ID, CATCHUP_JOB_ID):
                if self.scheduler.get_job(job_id) is not None:
                    self.scheduler.remove_job(job_id)
        self.is_listening = False
        self._transfer_filter = None
        logger.info("Transfer monitoring stopped")

    def status(self):
        return {
            "isListening": self.is_listening,
            "pushChannelOpen": self._transfer_filter is not None,
            "lastProcessedBlock": self.last_processed_block,
            "pollInterval": self.poll_interval,
            "catchupInterval": self.catchup_interval,
        }

    def get_sync_status(self):
        current_block = self.chain.get_latest_block_number() if self.chain.is_configured() else 0
        last = self.nft_manager.get_last_processed_block()
        if last is not None:
            self.last_processed_block = last
        return {
            "isListening": self.is_listening,
            "lastProcessedBlock": self.last_processed_block,
            "currentBlock": current_block,
            "blocksBehind": max(0, current_block - self.last_processed_block),
        }

    def _initialize_last_processed_block(self):
        last = self.nft_manager.get_last_processed_block()
        if last is not None:
            self.last_processed_block = last
            logger.info("Resuming transfer sync from block %s", last)
            return
        if self.start_block is not None:
            self.last_processed_block = int(self.start_block)
        else:
            self.last_processed_block = self.chain.get_latest_block_number()
        self.nft_manager.update_last_processed_block(self.last_processed_block)
        logger.info("Starting transfer sync from block %s", self.last_processed_block)

    def _open_push_channel(self):
        # 先建过滤器再补齐，两者重叠的区块会被处理两次，不会有空档
        event_filter = self.chain.create_transfer_filter()
        self.sync_historical_events()
        self._transfer_filter = event_filter

    def poll_new_events(self):
        """push 通道的一次拉取"""
        if not self.is_listening:
            return 0
        with self.app.app_context():
            try:
                if self._transfer_filter is None:
                    self._open_push_channel()
                events = self.chain.poll_filter(self._transfer_filter, 'transfer')
            except UpstreamUnavailableException as e:
                logger.warning("Transfer push channel unavailable, will retry: %s", e.message)
                self._transfer_filter = None
                return 0
            for event in events:
                self.handle_transfer_event(event)
            return len(events)

    def run_catchup(self):
        if not self.is_listening:
            return None
        with self.app.app_context():
            try:
                return self.sync_historical_events()
            except UpstreamUnavailableException as e:
                logger.warning("Historical transfer sync skipped: %s", e.message)
                return None

    def _apply_event(self, event):
        """
        :return: 'mint' 或 'transfer'
        """
        token_id = int(event["token_id"])
        if event["from"].lower() == ZERO_ADDRESS:
            block_timestamp = None
            if event.get("block_number") is not None:
                try:
                    block_timestamp = self.chain.get_block_timestamp(event["block_number"])
                except UpstreamUnavailableException:
                    logger.warning("Could not get timestamp for block %s, falling back to Phase2 check",
                                   event["block_number"])
            box_type_id = self.nft_manager.classify_box_type(event["to"], block_timestamp)
            logger.info("Mint detected: token %s -> %s, boxTypeId=%s", token_id, event["to"], box_type_id)
            self.nft_manager.upsert_minted_nft(token_id, event["to"], box_type_id)
            return 'mint'
        self.nft_manager.transfer_ownership(token_id, event["from"], event["to"])
        return 'transfer'

    def handle_transfer_event(self, event):
        """
        单个事件失败只记日志，不影响后续事件
        :return: 'mint' / 'transfer' / None(失败)
        """
        try:
            kind = self._apply_event(event)
        except Exception:
            logger.exception("Error handling Transfer event for token %s", event.get("token_id"))
            return None
        block_number = event.get("block_number")
        if block_number is not None and block_number > self.last_processed_block:
            try:
                self.nft_manager.update_last_processed_block(block_number)
                self.last_processed_block = block_number
            except Exception:
                logger.exception("Error updating last processed block to %s", block_number)
        return kind

    def sync_historical_events(self, from_block=None, to_block=None):
        """
        按区块区间补齐历史事件，起点包含在内，重复处理是幂等的
        指定的区间与 last_processed_block 不相连时只处理事件，不推进游标
        :return: {"processed", "mints", "transfers", "errors"}
        """
        if not self.chain.is_configured():
            raise UpstreamUnavailableException("Blockchain service not configured")

        stored = self.nft_manager.get_last_processed_block()
        if stored is not None and stored > self.last_processed_block:
            self.last_processed_block = stored

        start_block = int(from_block) if from_block is not None else self.last_processed_block
        end_block = int(to_block) if to_block is not None else self.chain.get_latest_block_number()
        logger.info("Syncing historical Transfer events from block %s to %s", start_block, end_block)

        counts = {"processed": 0, "mints": 0, "transfers": 0, "errors": 0}
        chunk_start = start_block
        while chunk_start <= end_block:
            chunk_end = min(chunk_start + self.block_batch_size - 1, end_block)
            events = self.chain.get_transfer_events(chunk_start, chunk_end)
            for event in events:
                try:
                    kind = self._apply_event(event)
                except Exception:
                    logger.exception("Error processing Transfer event for token %s", event.get("token_id"))
                    counts["errors"] += 1
                    continue
                counts["processed"] += 1
                counts["mints" if kind == 'mint' else "transfers"] += 1
            # 只有与游标相连的区间才推进游标，跳过的区块留给下一次补齐
            if chunk_start <= self.last_processed_block + 1:
                self.nft_manager.update_last_processed_block(chunk_end)
                self.last_processed_block = max(self.last_processed_block, chunk_end)
            chunk_start = chunk_end + 1

        logger.info("Historical sync completed: %(processed)s processed, %(mints)s mints, "
                    "%(transfers)s transfers, %(errors)s errors", counts)
        return counts
