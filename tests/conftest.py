"""
tests/conftest.py
每个测试使用一个全新的应用和内存数据库
"""
import os

import pytest

# ========== 关键：在导入app之前设置环境变量 ==========
os.environ['DB_URL'] = 'sqlite://'
os.environ['TESTING'] = 'true'

# ========== 导入app ==========
from app import create_app
from auth import TokenManager, hash_password
from config import TestingConfig
from models import ROLE_ADMIN, ROLE_USER, User, Word, db
from stores import UserStore, WordStore, WordTagStore

USER_PASSWORD = 'secret1'
ADMIN_PASSWORD = 'admin123'


@pytest.fixture
def app():
    """
    应用fixture - 创建表, 测试结束后删除
    """
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def test_client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    return db.session


@pytest.fixture
def word_store(db_session):
    return WordStore(db_session)


@pytest.fixture
def user_store(db_session):
    return UserStore(db_session)


@pytest.fixture
def word_tag_store(db_session):
    return WordTagStore(db_session)


@pytest.fixture
def tokens(app):
    return TokenManager.from_config(app.config)


@pytest.fixture
def sample_words(db_session):
    """
    预置测试单词数据, created_at 递增以保证分页顺序
    """
    words_data = [
        {'english': 'cat', 'chinese': '猫', 'category': 'animal', 'difficulty': 'easy'},
        {'english': 'dog', 'chinese': '狗', 'category': 'animal', 'difficulty': 'easy'},
        {'english': 'bird', 'chinese': '鸟', 'category': 'animal', 'difficulty': 'medium'},
    ]

    words = []
    for index, data in enumerate(words_data, start=1):
        word = Word(created_at=index * 1000, updated_at=index * 1000, **data)
        db_session.add(word)
        words.append(word)

    db_session.commit()
    return words


def _create_user(session, username, email, password, role):
    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def user(db_session):
    return _create_user(db_session, 'bob_01', 'bob@example.com', USER_PASSWORD, ROLE_USER)


@pytest.fixture
def admin(db_session):
    return _create_user(db_session, 'root_admin', 'admin@example.com', ADMIN_PASSWORD, ROLE_ADMIN)


@pytest.fixture
def auth_headers(user, tokens):
    return {'Authorization': f'Bearer {tokens.generate(user)}'}


@pytest.fixture
def admin_headers(admin, tokens):
    return {'Authorization': f'Bearer {tokens.generate(admin)}'}


# ========== 注册pytest标记 ==========

def pytest_configure(config):
    config.addinivalue_line("markers", "unit: 标记为单元测试")
    config.addinivalue_line("markers", "integration: 标记为集成测试")
    config.addinivalue_line("markers", "e2e: 标记为端到端流程测试")
