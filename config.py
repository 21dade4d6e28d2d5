# config.py
import os


class Config:
    # 格式: mysql+pymysql://用户名:密码@主机/数据库名
    SQLALCHEMY_DATABASE_URI = os.getenv('DB_URL', 'mysql+pymysql://root:root@db_host/lexitag')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_recycle": 300,
        "pool_size": 10,
        "pool_timeout": 10,
    }

    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me-in-production')

    # JWT 配置
    JWT_SECRET = os.getenv('JWT_SECRET', 'your-secret-key-change-in-production')
    JWT_ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')
    JWT_EXPIRES_MINUTES = int(os.getenv('JWT_EXPIRES_MINUTES', '1440'))
    JWT_ISSUER = os.getenv('JWT_ISSUER', 'lexitag')

    # 分页配置
    PAGE_SIZE = int(os.getenv('PAGE_SIZE', '12'))
    MAX_PAGE_SIZE = int(os.getenv('MAX_PAGE_SIZE', '100'))

    # 默认词库文件 (flask import-words 不带参数时使用)
    EXCEL_FILE = os.getenv('EXCEL_FILE', 'configs/words/IELTS.xlsx')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    # SQLite 不支持连接池参数
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET = 'test-secret'
    JWT_EXPIRES_MINUTES = 60
    LOG_LEVEL = 'WARNING'
