# auth.py
"""
认证模块

密码使用 werkzeug 加盐哈希, 令牌使用 python-jose 签发 HS256 JWT.

Usage:
    tokens = TokenManager(secret, expires_minutes=1440)
    auth_service = AuthService(UserStore(db.session), tokens)
    user, token = auth_service.register(RegisterRequest(...))
"""
import logging
import re
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from werkzeug.security import check_password_hash, generate_password_hash

from errors import (
    CODE_INVALID_CREDENTIALS,
    CODE_INVALID_PASSWORD,
    CODE_INVALID_TOKEN,
    CODE_TOKEN_EXPIRED,
    CODE_USER_DISABLED,
    AlreadyExists,
    StorageError,
    Unauthorized,
    UserNotFound,
    ValidationError,
    storage_errors,
)
from models import ROLE_ADMIN, ROLE_USER, User, now_ms
from pager import DEFAULT_PAGE_SIZE, Pager, QuerySource
from schemas import TokenClaims, UserOut

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r'^[a-zA-Z0-9_]{3,50}$')
EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
MIN_PASSWORD_LENGTH = 6


# =============================================================================
# 密码
# =============================================================================

def hash_password(password):
    return generate_password_hash(password)


def verify_password(password, password_hash):
    return check_password_hash(password_hash, password)


# =============================================================================
# JWT
# =============================================================================

class TokenManager:
    """签发与校验 JWT"""

    def __init__(self, secret, algorithm='HS256', expires_minutes=1440, issuer='lexitag'):
        self.secret = secret
        self.algorithm = algorithm
        self.expires_minutes = expires_minutes
        self.issuer = issuer

    @classmethod
    def from_config(cls, config):
        return cls(
            secret=config['JWT_SECRET'],
            algorithm=config['JWT_ALGORITHM'],
            expires_minutes=config['JWT_EXPIRES_MINUTES'],
            issuer=config['JWT_ISSUER'],
        )

    def generate(self, user):
        issued_at = datetime.now(timezone.utc)
        claims = {
            'user_id': user.id,
            'username': user.username,
            'email': user.email,
            'role': user.role,
            'iat': issued_at,
            'exp': issued_at + timedelta(minutes=self.expires_minutes),
            'iss': self.issuer,
            'sub': user.id,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def validate(self, token):
        """
        校验签名 / 过期时间 / 签发者, 返回 TokenClaims.

        Raises:
            Unauthorized: 令牌过期或无效
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm], issuer=self.issuer)
        except ExpiredSignatureError as e:
            raise Unauthorized("token expired", code=CODE_TOKEN_EXPIRED) from e
        except JWTError as e:
            raise Unauthorized(f"invalid token: {e}", code=CODE_INVALID_TOKEN) from e

        try:
            return TokenClaims.model_validate(payload)
        except ValueError as e:
            raise Unauthorized("invalid token claims", code=CODE_INVALID_TOKEN) from e


# =============================================================================
# 认证服务
# =============================================================================

class AuthService:

    def __init__(self, user_store, tokens):
        self.user_store = user_store
        self.tokens = tokens

    def register(self, request):
        """注册新用户, 返回 (user, token)"""
        _validate_registration(request.username, request.email, request.password)

        if self.user_store.exists_by_username(request.username):
            raise AlreadyExists("username already exists")
        if self.user_store.exists_by_email(request.email):
            raise AlreadyExists("email already exists")

        user = User(
            username=request.username,
            email=request.email,
            full_name=request.full_name,
            password_hash=hash_password(request.password),
            role=ROLE_USER,
            is_active=True,
        )
        self.user_store.create(user)
        token = self.tokens.generate(user)

        logger.info("User registered: user_id=%s username=%s email=%s", user.id, user.username, user.email)
        return user, token

    def login(self, request):
        """用户名或邮箱登录, 返回 (user, token)"""
        user = self.user_store.get_by_username_or_email(request.username)
        if user is None:
            raise Unauthorized("invalid username or password", code=CODE_INVALID_CREDENTIALS)
        if not user.is_active:
            raise Unauthorized("account is deactivated", code=CODE_USER_DISABLED)
        if not verify_password(request.password, user.password_hash):
            raise Unauthorized("invalid username or password", code=CODE_INVALID_CREDENTIALS)

        user.last_login = now_ms()
        try:
            self.user_store.save(user)
        except StorageError as e:
            # 登录时间只是记录, 写入失败不影响登录
            logger.warning("Failed to update last login time: user_id=%s error=%s", user.id, e)

        token = self.tokens.generate(user)
        logger.info("User logged in: user_id=%s username=%s", user.id, user.username)
        return user, token

    def validate_token(self, token):
        """校验令牌并重新加载用户, 以便签发后被停用的账号立即失效"""
        claims = self.tokens.validate(token)
        user = self.user_store.get_by_id(claims.user_id)
        if user is None:
            raise Unauthorized("user not found", code=CODE_INVALID_TOKEN)
        if not user.is_active:
            raise Unauthorized("user account is deactivated", code=CODE_USER_DISABLED)
        return user

    def refresh_token(self, token):
        """校验旧令牌并签发新令牌, 返回 (user, token)"""
        user = self.validate_token(token)
        return user, self.tokens.generate(user)

    def change_password(self, user_id, request):
        user = self.user_store.get_by_id(user_id)
        if user is None:
            raise UserNotFound(f"user not found: {user_id}")
        if not verify_password(request.current_password, user.password_hash):
            raise ValidationError("current password is incorrect", code=CODE_INVALID_PASSWORD)
        if len(request.new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError("password must be at least 6 characters long", code=CODE_INVALID_PASSWORD)

        user.password_hash = hash_password(request.new_password)
        self.user_store.save(user)
        logger.info("User password changed: user_id=%s", user_id)


def _validate_registration(username, email, password):
    if not USERNAME_PATTERN.fullmatch(username or ''):
        raise ValidationError(
            "username must be 3-50 characters and contain only letters, numbers, and underscores")
    if not EMAIL_PATTERN.fullmatch(email or ''):
        raise ValidationError("invalid email format")
    if len(password or '') < MIN_PASSWORD_LENGTH:
        raise ValidationError("password must be at least 6 characters long", code=CODE_INVALID_PASSWORD)


# =============================================================================
# 用户管理
# =============================================================================

class UserService:

    def __init__(self, user_store, page_size=DEFAULT_PAGE_SIZE, max_page_size=None):
        self.user_store = user_store
        self.page_size = page_size
        self.max_page_size = max_page_size

    def _require_user(self, user_id):
        user = self.user_store.get_by_id(user_id)
        if user is None:
            raise UserNotFound(f"user not found: {user_id}")
        return user

    def get_profile(self, user_id):
        return UserOut.model_validate(self._require_user(user_id))

    def update_profile(self, user_id, request):
        user = self._require_user(user_id)
        # 只修改请求里给出的字段
        for key, value in request.model_dump(exclude_none=True).items():
            setattr(user, key, value)
        self.user_store.save(user)
        logger.info("User profile updated: user_id=%s", user_id)
        return UserOut.model_validate(user)

    def list_users(self, page_number=1, page_size=None):
        pager = Pager(QuerySource(self.user_store.list_query()), self.page_size, self.max_page_size)
        with storage_errors(self.user_store.session, "failed to list users"):
            return pager.get_page(page_number, page_size, UserOut.model_validate, UserOut)

    def set_active(self, user_id, active):
        user = self._require_user(user_id)
        user.is_active = active
        self.user_store.save(user)
        logger.info("User %s: user_id=%s", "activated" if active else "deactivated", user_id)
        return UserOut.model_validate(user)

    def set_role(self, user_id, role):
        if role not in (ROLE_USER, ROLE_ADMIN):
            raise ValidationError(f"unknown role: {role}")
        user = self._require_user(user_id)
        user.role = role
        self.user_store.save(user)
        logger.info("User role changed: user_id=%s role=%s", user_id, role)
        return UserOut.model_validate(user)

    def delete_user(self, user_id):
        self.user_store.soft_delete(self._require_user(user_id))
