"""
Shared fixtures: a file-backed SQLite app and an in-memory stand-in for the contract
"""
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from blindbox.app import create_app
from blindbox.models import db
from blindbox.models.typings import NotFoundException, UpstreamUnavailableException

SIGNER_KEY = "0x" + "4c" * 32
ADMIN_KEY = "test-admin-key"
CONTRACT_ADDRESS = "0x471C2c840B69EB92523B1De0EEA791Ae1359AFd7"
# 2025-10-07T08:00:00Z
PUBLIC_START = 1759824000


class FakeChain:
    """Implements the ChainService surface the app depends on"""

    contract_address = CONTRACT_ADDRESS

    def __init__(self):
        self.configured = True
        self.down = False
        self.owners = {}
        self.random_seed = 0
        self.seed_revealed = False
        self.max_supply = 10
        self.total_supply = 0
        self.latest_block = 100
        self.block_timestamps = {}
        self.transfer_events = []
        self.pending_transfers = []
        self.pending_seed_events = []
        self.filters_created = 0

    def _check(self):
        if self.down:
            raise UpstreamUnavailableException("RPC call failed: connection refused")

    def is_configured(self):
        return self.configured

    def get_random_seed_status(self):
        self._check()
        return self.random_seed, self.seed_revealed

    def get_max_supply(self):
        self._check()
        return self.max_supply

    def get_total_supply(self):
        self._check()
        return self.total_supply

    def owner_of(self, token_id):
        self._check()
        if token_id not in self.owners:
            raise NotFoundException(f"Token {token_id} has no owner on chain")
        return Web3.to_checksum_address(self.owners[token_id])

    def get_block_timestamp(self, block_number):
        self._check()
        if block_number not in self.block_timestamps:
            raise UpstreamUnavailableException(f"block {block_number} unavailable")
        return self.block_timestamps[block_number]

    def get_latest_block_number(self):
        self._check()
        return self.latest_block

    def get_transfer_events(self, from_block, to_block):
        self._check()
        return [e for e in self.transfer_events if from_block <= e["block_number"] <= to_block]

    def create_transfer_filter(self):
        self._check()
        self.filters_created += 1
        return "transfer-filter"

    def create_random_seed_filter(self):
        self._check()
        return "seed-filter"

    def poll_filter(self, event_filter, kind):
        self._check()
        if kind == 'transfer':
            events, self.pending_transfers = self.pending_transfers, []
        else:
            events, self.pending_seed_events = self.pending_seed_events, []
        return events


def transfer_event(from_address, to_address, token_id, block_number, log_index=0):
    return {
        "from": from_address,
        "to": to_address,
        "token_id": token_id,
        "block_number": block_number,
        "tx_hash": "0x" + "ab" * 32,
        "log_index": log_index,
    }


def personal_sign(account, message):
    return Web3.to_hex(account.sign_message(encode_defunct(text=message)).signature)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def app(tmp_path, chain):
    app = create_app({
        "database_url": f"sqlite:///{tmp_path / 'blindbox.db'}",
        "signer_private_key": SIGNER_KEY,
        "admin_api_key": ADMIN_KEY,
        "environment": "test",
        "max_supply": 10,
        "public_start_time": "2025-10-07T08:00:00.000Z",
        "reveal_app_tag": "ROG Avatar",
        "scheduler_enabled": False,
        "transfer_start_block": 0,
    }, chain=chain, start_watchers=False)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def box(app):
    return app.extensions['blindbox']


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture
def owner():
    return Account.create()


@pytest.fixture
def stranger():
    return Account.create()
