# errors.py
"""
应用错误定义

错误码格式: 9 位数字
    前四位: 模块编码, 本项目为 1000
    后五位: 具体错误码

所有业务错误继承 AppError, 由 app.py 中的 errorhandler 统一转换为
{code, msg} 响应信封.
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

CODE_SUCCESS = 0

# 通用错误
CODE_SYSTEM_ERROR = 100000001
CODE_INVALID_REQUEST = 100000002
CODE_UNAUTHORIZED = 100000003
CODE_FORBIDDEN = 100000004
CODE_NOT_FOUND = 100000005

# 用户相关
CODE_USER_NOT_FOUND = 100000101
CODE_USER_ALREADY_EXISTS = 100000102
CODE_INVALID_PASSWORD = 100000103
CODE_USER_DISABLED = 100000104
CODE_INVALID_TOKEN = 100000106
CODE_TOKEN_EXPIRED = 100000107

# 认证相关
CODE_LOGIN_REQUIRED = 100000202
CODE_PERMISSION_DENIED = 100000203
CODE_INVALID_CREDENTIALS = 100000205

# 单词相关
CODE_WORD_NOT_FOUND = 100000301
CODE_WORD_IMPORT_FAILED = 100000304
CODE_INVALID_WORD_DATA = 100000305

# 单词标记相关
CODE_WORD_TAG_NOT_FOUND = 100000401
CODE_FORGET_CONFIRM_REQUIRED = 100000405
CODE_INVALID_MARK_REQUEST = 100000406

# 分页相关
CODE_INVALID_PAGE = 100000501
CODE_INVALID_PAGE_SIZE = 100000502

# 搜索相关
CODE_INVALID_SEARCH_QUERY = 100000602

# 数据库相关
CODE_DATABASE_ERROR = 100000701

# 数据验证
CODE_VALIDATION_ERROR = 100001201

MESSAGES = {
    CODE_SUCCESS: "成功",
    CODE_SYSTEM_ERROR: "系统内部错误",
    CODE_INVALID_REQUEST: "无效的请求参数",
    CODE_UNAUTHORIZED: "未授权访问",
    CODE_FORBIDDEN: "禁止访问",
    CODE_NOT_FOUND: "资源未找到",
    CODE_USER_NOT_FOUND: "用户不存在",
    CODE_USER_ALREADY_EXISTS: "用户已存在",
    CODE_INVALID_PASSWORD: "无效的密码",
    CODE_USER_DISABLED: "用户已被禁用",
    CODE_INVALID_TOKEN: "无效的令牌",
    CODE_TOKEN_EXPIRED: "令牌已过期",
    CODE_LOGIN_REQUIRED: "需要登录",
    CODE_PERMISSION_DENIED: "权限不足",
    CODE_INVALID_CREDENTIALS: "无效的凭据",
    CODE_WORD_NOT_FOUND: "单词不存在",
    CODE_WORD_IMPORT_FAILED: "单词导入失败",
    CODE_INVALID_WORD_DATA: "无效的单词数据",
    CODE_WORD_TAG_NOT_FOUND: "单词标记不存在",
    CODE_FORGET_CONFIRM_REQUIRED: "忘光操作需要确认",
    CODE_INVALID_MARK_REQUEST: "无效的标记请求",
    CODE_INVALID_PAGE: "无效的页码",
    CODE_INVALID_PAGE_SIZE: "无效的页面大小",
    CODE_INVALID_SEARCH_QUERY: "无效的搜索查询",
    CODE_DATABASE_ERROR: "数据库错误",
    CODE_VALIDATION_ERROR: "数据验证错误",
}


def get_error_message(code):
    """根据错误码获取错误消息"""
    return MESSAGES.get(code, "未知错误")


class AppError(Exception):
    """
    业务错误基类

    Attributes:
        code: 应用错误码 (非 0)
        message: 错误描述, 缺省时使用错误码对应的固定消息
        status_code: HTTP 状态码
    """
    code = CODE_SYSTEM_ERROR
    status_code = 500

    def __init__(self, message=None, code=None):
        if code is not None:
            self.code = code
        self.message = message or get_error_message(self.code)
        super().__init__(self.message)

    def to_dict(self):
        return {'code': self.code, 'msg': self.message}


class ValidationError(AppError):
    code = CODE_VALIDATION_ERROR
    status_code = 400


class NotFound(AppError):
    code = CODE_NOT_FOUND
    status_code = 404


class UserNotFound(NotFound):
    code = CODE_USER_NOT_FOUND


class WordNotFound(NotFound):
    code = CODE_WORD_NOT_FOUND


class WordTagNotFound(NotFound):
    code = CODE_WORD_TAG_NOT_FOUND


class AlreadyExists(AppError):
    code = CODE_USER_ALREADY_EXISTS
    status_code = 409


class Unauthorized(AppError):
    code = CODE_UNAUTHORIZED
    status_code = 401


class Forbidden(AppError):
    code = CODE_PERMISSION_DENIED
    status_code = 403


class ConfirmationRequired(AppError):
    code = CODE_FORGET_CONFIRM_REQUIRED
    status_code = 400


class StorageError(AppError):
    code = CODE_DATABASE_ERROR
    status_code = 500


class WordImportError(AppError):
    code = CODE_WORD_IMPORT_FAILED
    status_code = 400


@contextmanager
def storage_errors(session, context):
    """把 SQLAlchemy 异常包装成带上下文的 StorageError, 同时回滚会话"""
    try:
        yield
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("%s: %s", context, e)
        raise StorageError(f"{context}: {e.__class__.__name__}") from e
