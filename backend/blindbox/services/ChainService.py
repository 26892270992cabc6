# -*- coding: utf-8 -*-
import logging

from eth_utils import to_checksum_address
from web3 import Web3
from web3.exceptions import ContractLogicError

from blindbox.models.typings import NotFoundException, UpstreamUnavailableException

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

CONTRACT_ABI = [
    {"inputs": [], "name": "getRandomSeedStatus", "outputs": [{"internalType": "uint256", "name": "randomSeed", "type": "uint256"}, {"internalType": "bool", "name": "isRevealed", "type": "bool"}], "stateMutability": "view", "type": "function"},
    {"inputs": [], "name": "maxSupply", "outputs": [{"internalType": "uint64", "name": "", "type": "uint64"}], "stateMutability": "view", "type": "function"},
    {"inputs": [], "name": "totalSupply", "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}], "stateMutability": "view", "type": "function"},
    {"inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}], "name": "ownerOf", "outputs": [{"internalType": "address", "name": "", "type": "address"}], "stateMutability": "view", "type": "function"},
    {"anonymous": False, "inputs": [{"indexed": False, "internalType": "uint256", "name": "randomSeed", "type": "uint256"}], "name": "RandomSeedSet", "type": "event"},
    {"anonymous": False, "inputs": [{"indexed": True, "internalType": "address", "name": "from", "type": "address"}, {"indexed": True, "internalType": "address", "name": "to", "type": "address"}, {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"}], "name": "Transfer", "type": "event"},
]


class ChainService:
    """
    合约只读调用 + 事件订阅
    所有 RPC 失败都转换为 UpstreamUnavailableException，由调用方决定跳过还是返回 503
    """

    def __init__(self, rpc_url, contract_address, timeout=10):
        self.rpc_url = rpc_url or ""
        self.contract_address = to_checksum_address(contract_address) if contract_address else ""
        self.timeout = timeout
        self.w3 = None
        self.contract = None
        if self.rpc_url and self.contract_address:
            self.w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": timeout}))
            self.contract = self.w3.eth.contract(address=self.contract_address, abi=CONTRACT_ABI)
        else:
            logger.warning("chain service not configured (rpc_url/contract_address missing)")

    def is_configured(self):
        return self.contract is not None

    def _require_contract(self):
        if self.contract is None:
            raise UpstreamUnavailableException("Blockchain service not configured")

    def _call(self, what, fn):
        self._require_contract()
        try:
            return fn()
        except ContractLogicError:
            raise
        except Exception as e:
            logger.warning("rpc call %s failed: %s", what, e)
            raise UpstreamUnavailableException(f"RPC call {what} failed: {e}")

    def get_random_seed_status(self):
        """
        :return: (random_seed, is_revealed)
        """
        seed, revealed = self._call("getRandomSeedStatus",
                                    lambda: self.contract.functions.getRandomSeedStatus().call())
        return int(seed), bool(revealed)

    def get_max_supply(self):
        return int(self._call("maxSupply", lambda: self.contract.functions.maxSupply().call()))

    def get_total_supply(self):
        return int(self._call("totalSupply", lambda: self.contract.functions.totalSupply().call()))

    def owner_of(self, token_id):
        try:
            owner = self._call("ownerOf", lambda: self.contract.functions.ownerOf(int(token_id)).call())
        except ContractLogicError as e:
            # 未铸造或已销毁的 token 会 revert
            raise NotFoundException(f"Token {token_id} has no owner on chain: {e}")
        return to_checksum_address(owner)

    def get_block_timestamp(self, block_number):
        block = self._call("getBlock", lambda: self.w3.eth.get_block(int(block_number)))
        return int(block["timestamp"])

    def get_latest_block_number(self):
        return int(self._call("blockNumber", lambda: self.w3.eth.block_number))

    @staticmethod
    def _format_transfer(log):
        return {
            "from": to_checksum_address(log["args"]["from"]),
            "to": to_checksum_address(log["args"]["to"]),
            "token_id": int(log["args"]["tokenId"]),
            "block_number": int(log["blockNumber"]),
            "tx_hash": Web3.to_hex(log["transactionHash"]),
            "log_index": int(log["logIndex"]),
        }

    @staticmethod
    def _format_random_seed(log):
        return {
            "random_seed": int(log["args"]["randomSeed"]),
            "block_number": int(log["blockNumber"]),
            "tx_hash": Web3.to_hex(log["transactionHash"]),
        }

    def get_transfer_events(self, from_block, to_block):
        logs = self._call(
            "getLogs(Transfer)",
            lambda: self.contract.events.Transfer.get_logs(from_block=int(from_block), to_block=int(to_block)),
        )
        events = [self._format_transfer(log) for log in logs]
        events.sort(key=lambda e: (e["block_number"], e["log_index"]))
        return events

    def create_transfer_filter(self):
        return self._call("newFilter(Transfer)",
                          lambda: self.contract.events.Transfer.create_filter(from_block="latest"))

    def create_random_seed_filter(self):
        return self._call("newFilter(RandomSeedSet)",
                          lambda: self.contract.events.RandomSeedSet.create_filter(from_block="latest"))

    def poll_filter(self, event_filter, kind):
        """
        拉取过滤器的新日志；过滤器在节点侧过期时同样抛出 UpstreamUnavailableException
        :param kind: 'transfer' 或 'random_seed'
        """
        logs = self._call("getFilterChanges", lambda: event_filter.get_new_entries())
        formatter = self._format_transfer if kind == "transfer" else self._format_random_seed
        events = [formatter(log) for log in logs]
        events.sort(key=lambda e: (e["block_number"], e.get("log_index", 0)))
        return events
