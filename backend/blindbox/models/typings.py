# -*- coding: utf-8 -*-
import logging
from enum import IntEnum

logger = logging.getLogger(__name__)


class BoxType(IntEnum):
    GOLD = 0
    RED = 1
    BLUE = 2
    PUBLIC = 3


BOX_TYPE_NAMES = {
    BoxType.GOLD: '金盒',
    BoxType.RED: '紅盒',
    BoxType.BLUE: '藍盒',
    BoxType.PUBLIC: '公售盒',
}


class CustomException(Exception):
    """
    自定义的异常类的基类
    http_status: 路由层返回的状态码
    recorded: 为 True 时由错误处理器写入 error_log 表
    """
    http_status = 500
    recorded = False

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def record_error(self):
        """
        把异常记录到数据库中，调用方需保证当前 session 中没有未提交的业务数据
        :return:
        """
        from flask import has_app_context
        if not has_app_context():
            logger.error("[%s] %s", type(self).__name__, self.message)
            return
        from blindbox.models.database import db
        from blindbox.models.ErrorLog import ErrorLog
        try:
            db.session.add(ErrorLog(error_type=type(self).__name__, error_event=self.message))
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error("[%s] %s (could not write error_log: %s)", type(self).__name__, self.message, e)


class ConfigOperationException(CustomException):
    """
    配置异常类，例如缺少签名私钥
    """
    recorded = True


class NotFoundException(CustomException):
    """
    token、metadata 或白名单记录不存在
    """
    http_status = 404


class InvalidInputException(CustomException):
    """
    参数格式错误：地址、token id、box type 等
    """
    http_status = 400


class InvalidModulusException(InvalidInputException):
    """
    置换空间必须大于 1
    """


class UnauthorizedException(CustomException):
    """
    管理员密钥缺失
    """
    http_status = 401


class ForbiddenException(UnauthorizedException):
    """
    管理员密钥错误
    """
    http_status = 403


class InvalidSignatureException(UnauthorizedException):
    """
    签名无法恢复，或恢复出的地址不是链上持有人
    """
    http_status = 401


class InvalidMessageException(UnauthorizedException):
    """
    提交的消息与链上持有人的规范消息不一致
    """
    http_status = 403


class AlreadyRevealedException(CustomException):
    """
    token 已绑定 origin，不能再次解盲
    """
    http_status = 400


class NoAvailableMetadataException(CustomException):
    """
    某个盒子类型的 origin metadata 已经分配完，需要运维补充数据
    """
    http_status = 500
    recorded = True


class UpstreamUnavailableException(CustomException):
    """
    RPC 不可达或未配置
    """
    http_status = 503


class DataCorruptionException(CustomException):
    """
    数据不变量被破坏，说明存在 bug
    """
    http_status = 500
    recorded = True
