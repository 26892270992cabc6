# -*- coding: utf-8 -*-
"""
与合约保持一致的哈希、置换和签名工具

置换参数必须与合约逐位一致：
    a = keccak256(abi.encodePacked(uint256 seed, "a")) mod N，再调整到与 N 互素
    b = keccak256(abi.encodePacked(uint256 seed, "b")) mod N
    slot = (a * index + b) mod N
"""
import logging
from math import gcd

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import to_checksum_address
from web3 import Web3

from blindbox.models.typings import InvalidInputException, InvalidModulusException

logger = logging.getLogger(__name__)

UINT256_MAX = 2 ** 256 - 1


def _seed_hash(seed, tag):
    digest = Web3.solidity_keccak(['uint256', 'string'], [seed, tag])
    return int.from_bytes(digest, 'big')


def derive_permutation_params(seed, modulus):
    """
    由随机种子推导仿射置换参数 (a, b)，gcd(a, modulus) == 1
    :param seed: uint256 随机种子
    :param modulus: 置换空间大小，即 maxSupply，必须大于 1
    :return: (a, b)
    """
    if modulus <= 1:
        raise InvalidModulusException(f"Invalid modulus: {modulus}")
    if seed < 0 or seed > UINT256_MAX:
        raise InvalidInputException(f"Seed out of uint256 range: {seed}")

    a = _seed_hash(seed, "a") % modulus
    if a == 0:
        a = 1
    while gcd(a, modulus) != 1:
        a = (a + 1) % modulus
        if a == 0:
            a = 1

    b = _seed_hash(seed, "b") % modulus
    return a, b


def permute(index, a, b, modulus):
    """0 起始下标上的仿射置换"""
    return (a * index + b) % modulus


def calculate_metadata_id(token_id, random_seed, max_supply):
    """tokenId 与 metadataId 都从 1 开始"""
    a, b = derive_permutation_params(random_seed, max_supply)
    return permute(token_id - 1, a, b, max_supply) + 1


def build_reveal_message(app_tag, token_id, address):
    return f"{app_tag}: Reveal token {token_id} by {to_checksum_address(address)}"


def recover_personal_signer(message, signature):
    """
    personal_sign 验签，返回校验和格式的签名地址
    签名格式错误时抛出 ValueError 系列异常，由调用方转换
    """
    return to_checksum_address(Account.recover_message(encode_defunct(text=message), signature=signature))


def phase2_message_hash(user_address, token_id):
    # keccak256(abi.encodePacked(msg.sender, _tokenId))
    return Web3.solidity_keccak(['address', 'uint256'], [to_checksum_address(user_address), int(token_id)])


def sign_phase2(user_address, token_id, signer_account):
    """
    生成 Phase2 铸造签名，与合约的 EIP-191 校验逻辑一致
    :param signer_account: eth_account 的 LocalAccount
    :return: 0x 开头的 65 字节签名
    """
    message = encode_defunct(primitive=bytes(phase2_message_hash(user_address, token_id)))
    signed = signer_account.sign_message(message)
    return Web3.to_hex(signed.signature)


def verify_phase2(user_address, token_id, signature, signer_address):
    try:
        message = encode_defunct(primitive=bytes(phase2_message_hash(user_address, token_id)))
        recovered = Account.recover_message(message, signature=signature)
    except Exception as e:
        logger.warning("phase2 signature recovery failed for %s #%s: %s", user_address, token_id, e)
        return False
    return recovered.lower() == signer_address.lower()
