# -*- coding: utf-8 -*-
import json
import logging
import os
from datetime import datetime, timezone

from blindbox.models.typings import ConfigOperationException

logger = logging.getLogger(__name__)

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
CONFIG_FILE = os.environ.get("BLINDBOX_CONFIG_FILE", os.path.join(ROOT_DIR, "config.json"))

SCHEDULER_API_ENABLED = False
SCHEDULER_TIMEZONE = "UTC"

DEFAULTS = {
    "database_url": "sqlite:///blindbox.db",
    "rpc_url": "",
    "rpc_timeout": 10,
    "contract_address": "0x471C2c840B69EB92523B1De0EEA791Ae1359AFd7",
    "chain_id": 1,
    "max_supply": 6020,
    "soulbound_start_time": "2025-09-22T08:00:00.000Z",
    "soulbound_end_time": "2025-10-06T07:59:59.999Z",
    "public_start_time": "2025-10-07T08:00:00.000Z",
    "public_end_time": "2025-11-04T07:59:59.999Z",
    "mint_price": "0",
    "signer_private_key": "",
    "admin_api_key": "",
    "environment": "development",
    "reveal_app_tag": "ROG Avatar",
    "reveal_batch_size": 500,
    "random_seed_check_interval": 30,
    "transfer_poll_interval": 5,
    "transfer_catchup_interval": 300,
    "transfer_block_batch_size": 2000,
    "transfer_start_block": None,
    "scheduler_enabled": True,
    "host": "0.0.0.0",
    "port": 3000,
}

# 以下 key 为整数
INT_KEYS = {
    "rpc_timeout", "chain_id", "max_supply", "reveal_batch_size", "random_seed_check_interval",
    "transfer_poll_interval", "transfer_catchup_interval", "transfer_block_batch_size",
    "transfer_start_block", "port",
}
BOOL_KEYS = {"scheduler_enabled"}


class Config:
    _instance = None

    @classmethod
    def _get_instance(cls, config_file=CONFIG_FILE):
        if cls._instance is None:
            cls._instance = cls.__new__(cls)
            cls._instance.config_file = config_file
            cls._instance.config = cls._instance.load_config()
        return cls._instance

    def load_config(self):
        """
        加载配置文件
        :return: 配置文件，json形式
        """
        if not os.path.exists(self.config_file):
            return {}
        try:
            with open(self.config_file, 'r', encoding='utf-8') as file:
                return json.load(file)
        except (OSError, ValueError) as e:
            raise ConfigOperationException("读取配置文件出错: " + ", ".join(str(arg) for arg in e.args))

    @classmethod
    def reload(cls, config_file=CONFIG_FILE):
        cls._instance = None
        return cls._get_instance(config_file)

    @classmethod
    def get_value(cls, *args):
        """
        获取配置，优先级：环境变量 > config.json > 默认值
        针对多级key做了优化，环境变量只覆盖一级 key
        :param args: 指定的key，可以为多级
        :return: 获取到的值，不存在时返回 None
        """
        instance = cls._get_instance()
        if len(args) == 1:
            env_value = os.environ.get(args[0].upper())
            if env_value is not None and env_value != "":
                return cls._coerce(args[0], env_value)
        value = instance.config
        try:
            for key in args:
                value = value[key]
            return cls._coerce(args[0], value) if len(args) == 1 else value
        except (KeyError, TypeError):
            if len(args) == 1:
                return DEFAULTS.get(args[0])
            return None

    @classmethod
    def as_dict(cls):
        """所有已知配置项的当前值"""
        return {key: cls.get_value(key) for key in DEFAULTS}

    @staticmethod
    def _coerce(key, value):
        if value is None:
            return None
        try:
            if key in INT_KEYS:
                return int(value)
            if key in BOOL_KEYS and isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
        except ValueError:
            raise ConfigOperationException(f"配置项 {key} 的值无效: {value!r}")
        return value


def parse_iso_timestamp(value):
    """
    把 ISO-8601 时间（允许 Z 结尾）转成 unix 秒
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ConfigOperationException(f"无法解析时间: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())
