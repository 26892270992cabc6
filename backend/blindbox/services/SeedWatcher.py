# -*- coding: utf-8 -*-
import logging

from blindbox.models.typings import UpstreamUnavailableException

logger = logging.getLogger(__name__)

SEED_JOB_ID = 'random_seed_check'


class SeedWatcher:
    """
    定时检查合约随机种子，种子揭示后生成全部映射，然后停止
    映射生成有 mappings_generated 保护，重复执行是无害的
    """

    def __init__(self, app, chain, mapping_manager, scheduler=None, check_interval=30):
        self.app = app
        self.chain = chain
        self.mapping_manager = mapping_manager
        self.scheduler = scheduler
        self.check_interval = check_interval
        self.is_running = False
        self._seed_filter = None

    def start(self):
        if self.is_running:
            logger.info("Random seed monitoring is already running")
            return False
        logger.info("Starting random seed monitoring (checking every %ss)", self.check_interval)
        self.is_running = True
        self.check_random_seed()
        # 首次检查可能已经完成并停止
        if self.is_running and self.scheduler is not None:
            self.scheduler.add_job(id=SEED_JOB_ID, func=self.check_random_seed, trigger='interval',
                                   seconds=self.check_interval, max_instances=1, replace_existing=True)
        return True

    def stop(self):
        if self.scheduler is not None and self.scheduler.get_job(SEED_JOB_ID) is not None:
            self.scheduler.remove_job(SEED_JOB_ID)
        self.is_running = False
        self._seed_filter = None
        logger.info("Random seed monitoring stopped")

    def status(self):
        return {"isRunning": self.is_running, "checkInterval": self.check_interval}

    def _drain_seed_events(self):
        """RandomSeedSet 事件带有区块号和交易哈希，先记下来"""
        if self._seed_filter is None:
            self._seed_filter = self.chain.create_random_seed_filter()
            return
        try:
            events = self.chain.poll_filter(self._seed_filter, 'random_seed')
        except UpstreamUnavailableException:
            self._seed_filter = None
            raise
        for event in events:
            logger.info("RandomSeedSet event detected: %s", event["random_seed"])
            self.mapping_manager.record_seed(event["random_seed"], event["block_number"], event["tx_hash"])

    def check_random_seed(self):
        """
        一次检查；RPC 不可用时跳过，等下一次
        :return: 生成映射时使用的种子，否则 None
        """
        with self.app.app_context():
            try:
                if self.mapping_manager.has_generated_mappings():
                    logger.info("Random seed already synced and mappings generated")
                    self.stop()
                    return None

                self._drain_seed_events()
                random_seed = self.mapping_manager.sync_random_seed_from_contract()
                if random_seed is None:
                    logger.info("Random seed not yet available, will check again")
                    return None

                max_supply = self.chain.get_max_supply()
                self.mapping_manager.generate_all_mappings(random_seed, max_supply)
                logger.info("Random seed monitoring completed: %s", random_seed)
                self.stop()
                return random_seed
            except UpstreamUnavailableException as e:
                logger.warning("Random seed check skipped: %s", e.message)
                return None
            except Exception:
                logger.exception("Error checking random seed")
                return None

    def force_check(self):
        """管理员手动触发，不受运行状态影响"""
        with self.app.app_context():
            try:
                random_seed = self.mapping_manager.sync_random_seed_from_contract()
                if random_seed is None:
                    return {"success": False, "randomSeed": None,
                            "message": "Random seed not yet available on blockchain"}
                max_supply = self.chain.get_max_supply()
                generated = self.mapping_manager.generate_all_mappings(random_seed, max_supply)
            except UpstreamUnavailableException as e:
                return {"success": False, "randomSeed": None, "message": e.message}
            if self.is_running:
                self.stop()
            return {
                "success": True,
                "randomSeed": str(random_seed),
                "message": "Random seed found and mappings generated" if generated
                else "Random seed found, mappings already generated",
            }
