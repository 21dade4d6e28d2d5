# models.py
import time
import uuid

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ROLE_USER = 'user'
ROLE_ADMIN = 'admin'


def now_ms():
    """当前时间 (毫秒级 Unix 时间戳)"""
    return int(time.time() * 1000)


def new_id():
    return str(uuid.uuid4())


class Word(db.Model):
    __tablename__ = 'words'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    english = db.Column(db.String(200), nullable=False, index=True)
    chinese = db.Column(db.String(500), nullable=False)
    phonetic = db.Column(db.String(100), nullable=True)
    example = db.Column(db.Text, nullable=True)
    definition = db.Column(db.Text, nullable=True)
    difficulty = db.Column(db.String(20), nullable=True)
    category = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.BigInteger, nullable=False, default=now_ms)
    updated_at = db.Column(db.BigInteger, nullable=False, default=now_ms, onupdate=now_ms)


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    # 软删除的用户名 / 邮箱仍然占用唯一索引
    username = db.Column(db.String(50), unique=True, nullable=False)
    email = db.Column(db.String(100), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(100), nullable=True)
    avatar_url = db.Column(db.String(255), nullable=True)
    bio = db.Column(db.Text, nullable=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login = db.Column(db.BigInteger, nullable=True)
    created_at = db.Column(db.BigInteger, nullable=False, default=now_ms)
    updated_at = db.Column(db.BigInteger, nullable=False, default=now_ms, onupdate=now_ms)
    deleted_at = db.Column(db.BigInteger, nullable=True, index=True)

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN


class WordTag(db.Model):
    """
    用户对单词的"认识"标记

    known 为空表示不认识, 非空表示从该毫秒时间戳起认识.
    从未标记和标记后又忘记在存储层不做区分.
    """
    __tablename__ = 'word_tags'
    __table_args__ = (
        db.UniqueConstraint('word_id', 'user_id', name='uq_word_tags_word_user'),
    )
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    word_id = db.Column(db.String(36), db.ForeignKey('words.id', ondelete='CASCADE'),
                        nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'),
                        nullable=False, index=True)
    known = db.Column(db.BigInteger, nullable=True)
    created_at = db.Column(db.BigInteger, nullable=False, default=now_ms)
    updated_at = db.Column(db.BigInteger, nullable=False, default=now_ms, onupdate=now_ms)

    def mark_as_known(self):
        self.known = now_ms()

    def mark_as_unknown(self):
        self.known = None

    @property
    def is_known(self):
        return self.known is not None
