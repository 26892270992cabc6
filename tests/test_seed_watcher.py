from apscheduler.schedulers.background import BackgroundScheduler

from blindbox.models import db
from blindbox.models.NftInfo import NftInfo
from blindbox.models.RandomSeedInfo import RandomSeedInfo
from blindbox.services.SeedWatcher import SEED_JOB_ID
from blindbox.utils.crypto import calculate_metadata_id

SEED = 98765432123456789


def mint_all(box, owner, count=10):
    for token_id in range(1, count + 1):
        box.nft_manager.upsert_minted_nft(token_id, owner.address, 3)


class TestMappingGeneration:

    def test_generate_once(self, box, chain, owner):
        mint_all(box, owner)
        assert box.mapping_manager.generate_all_mappings(SEED, 10) is True
        assert box.mapping_manager.generate_all_mappings(SEED, 10) is False

        rows = db.session.query(NftInfo).order_by(NftInfo.token_id).all()
        assert sorted(row.metadata_id for row in rows) == list(range(1, 11))
        for row in rows:
            assert row.metadata_id == calculate_metadata_id(row.token_id, SEED, 10)
            assert row.origin_id == 0
        assert box.mapping_manager.has_generated_mappings()

    def test_record_seed_is_idempotent(self, box):
        box.mapping_manager.record_seed(SEED)
        box.mapping_manager.record_seed(SEED, block_number=77, tx_hash="0x" + "cd" * 32)
        rows = db.session.query(RandomSeedInfo).all()
        assert len(rows) == 1
        assert rows[0].block_number == 77

    def test_unrevealed_seed_is_not_synced(self, box, chain):
        chain.random_seed, chain.seed_revealed = SEED, False
        assert box.mapping_manager.sync_random_seed_from_contract() is None
        chain.random_seed, chain.seed_revealed = 0, True
        assert box.mapping_manager.sync_random_seed_from_contract() is None
        assert db.session.query(RandomSeedInfo).count() == 0


class TestSeedWatcher:

    def test_waits_then_generates_and_stops(self, box, chain, owner):
        scheduler = BackgroundScheduler()
        watcher = box.seed_watcher
        watcher.scheduler = scheduler
        mint_all(box, owner)

        assert watcher.start() is True
        assert watcher.status()["isRunning"] is True
        assert scheduler.get_job(SEED_JOB_ID) is not None

        chain.random_seed, chain.seed_revealed = SEED, True
        assert watcher.check_random_seed() == SEED
        assert watcher.status()["isRunning"] is False
        assert scheduler.get_job(SEED_JOB_ID) is None

        db.session.expire_all()
        assert db.session.get(NftInfo, 1).metadata_id == calculate_metadata_id(1, SEED, 10)
        assert watcher.check_random_seed() is None

    def test_start_after_generation_stops_immediately(self, box, chain, owner):
        mint_all(box, owner)
        box.mapping_manager.generate_all_mappings(SEED, 10)
        scheduler = BackgroundScheduler()
        box.seed_watcher.scheduler = scheduler
        box.seed_watcher.start()
        assert box.seed_watcher.status()["isRunning"] is False
        assert scheduler.get_job(SEED_JOB_ID) is None

    def test_seed_event_records_block(self, box, chain):
        watcher = box.seed_watcher
        watcher.start()
        chain.pending_seed_events = [{"random_seed": SEED, "block_number": 55, "tx_hash": "0x" + "ef" * 32}]
        chain.random_seed, chain.seed_revealed = SEED, True
        watcher.check_random_seed()
        db.session.expire_all()
        row = db.session.query(RandomSeedInfo).filter_by(random_seed=str(SEED)).one()
        assert row.block_number == 55
        assert row.mappings_generated is True

    def test_outage_is_skipped(self, box, chain):
        box.seed_watcher.start()
        chain.down = True
        assert box.seed_watcher.check_random_seed() is None
        assert box.seed_watcher.status()["isRunning"] is True
        box.seed_watcher.stop()

    def test_force_check(self, box, chain, owner):
        mint_all(box, owner)
        result = box.seed_watcher.force_check()
        assert result["success"] is False

        chain.random_seed, chain.seed_revealed = SEED, True
        result = box.seed_watcher.force_check()
        assert result == {"success": True, "randomSeed": str(SEED),
                          "message": "Random seed found and mappings generated"}
        result = box.seed_watcher.force_check()
        assert result["message"] == "Random seed found, mappings already generated"
