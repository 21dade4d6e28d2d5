# schemas.py
"""
请求体与结果类型

JSON 字段使用 camelCase, Python 属性使用 snake_case, 请求两种写法都接受.
"""
from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def dump(self):
        return self.model_dump(by_alias=True)


# ==================== 请求 ====================

class RegisterRequest(Schema):
    username: str
    email: str
    password: str
    full_name: Optional[str] = None


class LoginRequest(Schema):
    # 用户名或邮箱
    username: str
    password: str


class UpdateProfileRequest(Schema):
    full_name: Optional[str] = Field(default=None, max_length=100)
    avatar_url: Optional[str] = Field(default=None, max_length=255)
    bio: Optional[str] = None


class ChangePasswordRequest(Schema):
    current_password: str
    new_password: str


class WordMarkRequest(Schema):
    word_id: str = Field(min_length=1)


class BatchMarkStatusRequest(Schema):
    word_ids: List[str]


class ForgetWordsRequest(Schema):
    word_ids: List[str] = Field(min_length=1)


class ForgetAllRequest(Schema):
    confirm: bool = False


class WordRequest(Schema):
    english: str
    chinese: str
    phonetic: Optional[str] = None
    example: Optional[str] = None
    definition: Optional[str] = None
    difficulty: Optional[str] = None
    category: Optional[str] = None

    @field_validator('english', 'chinese')
    @classmethod
    def not_blank(cls, value):
        value = value.strip()
        if not value:
            raise ValueError('must not be empty')
        return value


# ==================== 结果 ====================

class WordOut(Schema):
    id: str
    english: str
    chinese: str
    phonetic: Optional[str] = None
    example: Optional[str] = None
    definition: Optional[str] = None
    difficulty: Optional[str] = None
    category: Optional[str] = None
    created_at: int
    updated_at: int


class WordWithMark(WordOut):
    is_marked: bool = False
    mark_count: int = 0
    marked_at: Optional[int] = None


class UserOut(Schema):
    id: str
    username: str
    email: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    role: str
    is_active: bool
    last_login: Optional[int] = None
    created_at: int
    updated_at: int


class AuthResult(Schema):
    user: UserOut
    token: str


class TokenClaims(Schema):
    user_id: str
    username: str
    email: str
    role: str
    iat: int
    exp: int
    iss: str
    sub: str


class Page(Schema, Generic[T]):
    """一页数据"""
    items: List[T]
    total: int
    page_number: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class MarkResult(Schema):
    word_id: str
    is_marked: bool
    mark_count: int
    marked_at: Optional[int] = None
    message: str


class MarkStatus(Schema):
    word_id: str
    is_marked: bool
    mark_count: int
    marked_at: Optional[int] = None


class UserProgress(Schema):
    user_id: str
    known_words: int
    total_words: int
    progress_rate: float


class KnownWordInfo(Schema):
    word_id: str
    known_at: int


class UserWordStats(Schema):
    user_id: str
    known_words_count: int
    total_words_count: int
    progress_rate: float
    recent_marks: List[KnownWordInfo]


class ForgetResult(Schema):
    word_ids: List[str] = []
    forgotten_count: int
    message: str


class WordTagOut(Schema):
    id: str
    word_id: str
    user_id: str
    known: Optional[int] = None
    created_at: int
    updated_at: int


class WordTagStats(Schema):
    total_word_tags: int
    total_user_marks: int
    recent_marks: List[WordTagOut]


class VocabularyStats(Schema):
    total_words: int
    total_pages: int
    page_size: int
    categories: Dict[str, int]
    difficulties: Dict[str, int]


class SearchResult(Schema):
    query: str
    results: List[WordOut]
    count: int


class ImportResult(Schema):
    imported: int
    skipped: int
