# stores.py
"""
数据访问层

每个 Store 在构造时接收 SQLAlchemy session, 不依赖全局句柄.
查询类方法返回模型对象或 None, 写操作自行提交事务;
底层数据库异常统一包装成 StorageError.
"""
import logging

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from errors import AlreadyExists, WordImportError, storage_errors
from models import User, Word, WordTag, new_id, now_ms
from schemas import ImportResult

logger = logging.getLogger(__name__)

RECENT_MARKS_LIMIT = 10


def _escape_like(value):
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


class WordStore:

    def __init__(self, session):
        self.session = session

    def get_by_id(self, word_id):
        with storage_errors(self.session, "failed to get word"):
            return self.session.get(Word, word_id)

    def get_by_ids(self, word_ids):
        if not word_ids:
            return []
        with storage_errors(self.session, "failed to get words by ids"):
            return self.session.query(Word).filter(Word.id.in_(list(word_ids))).all()

    def get_by_english(self, english):
        with storage_errors(self.session, "failed to get word by english"):
            return (self.session.query(Word)
                    .filter(func.lower(Word.english) == english.strip().lower())
                    .first())

    def create(self, **fields):
        word = Word(**fields)
        with storage_errors(self.session, "failed to create word"):
            self.session.add(word)
            self.session.commit()
        logger.info("Word created: id=%s english=%s", word.id, word.english)
        return word

    def update(self, word, **fields):
        for key, value in fields.items():
            setattr(word, key, value)
        word.updated_at = now_ms()
        with storage_errors(self.session, "failed to update word"):
            self.session.commit()
        logger.info("Word updated: id=%s", word.id)
        return word

    def delete(self, word):
        with storage_errors(self.session, "failed to delete word"):
            # SQLite 默认不执行外键级联, 这里显式删除标记
            self.session.query(WordTag).filter(WordTag.word_id == word.id).delete(synchronize_session=False)
            self.session.delete(word)
            self.session.commit()
        logger.info("Word deleted: id=%s", word.id)

    def delete_all(self):
        logger.warning("Deleting all words from database")
        with storage_errors(self.session, "failed to delete all words"):
            self.session.query(WordTag).delete(synchronize_session=False)
            deleted = self.session.query(Word).delete(synchronize_session=False)
            self.session.commit()
        return deleted

    def page_query(self):
        """分页用的有序查询"""
        return self.session.query(Word).order_by(Word.created_at.asc(), Word.id.asc())

    def all_words(self):
        with storage_errors(self.session, "failed to get all words"):
            return self.session.query(Word).order_by(Word.english.asc()).all()

    def count(self):
        with storage_errors(self.session, "failed to count words"):
            return self.session.query(func.count(Word.id)).scalar() or 0

    def search(self, query):
        pattern = f"%{_escape_like(query.lower())}%"
        with storage_errors(self.session, "failed to search words"):
            return (self.session.query(Word)
                    .filter(or_(func.lower(Word.english).like(pattern, escape='\\'),
                                func.lower(Word.chinese).like(pattern, escape='\\')))
                    .order_by(Word.english.asc())
                    .all())

    def find_by_chinese(self, chinese):
        pattern = f"%{_escape_like(chinese)}%"
        with storage_errors(self.session, "failed to get words by chinese"):
            return (self.session.query(Word)
                    .filter(Word.chinese.like(pattern, escape='\\'))
                    .order_by(Word.english.asc())
                    .all())

    def find_by_category(self, category):
        with storage_errors(self.session, "failed to get words by category"):
            return (self.session.query(Word)
                    .filter(Word.category == category)
                    .order_by(Word.english.asc())
                    .all())

    def find_by_difficulty(self, difficulty):
        with storage_errors(self.session, "failed to get words by difficulty"):
            return (self.session.query(Word)
                    .filter(Word.difficulty == difficulty)
                    .order_by(Word.english.asc())
                    .all())

    def random(self, count):
        if count <= 0:
            return []
        dialect = self.session.get_bind().dialect.name
        order = func.rand() if dialect == 'mysql' else func.random()
        with storage_errors(self.session, "failed to get random words"):
            return self.session.query(Word).order_by(order).limit(count).all()

    def _group_counts(self, column):
        rows = (self.session.query(column, func.count(Word.id))
                .filter(column.isnot(None), column != '')
                .group_by(column)
                .all())
        return {key: count for key, count in rows}

    def category_counts(self):
        with storage_errors(self.session, "failed to count categories"):
            return self._group_counts(Word.category)

    def difficulty_counts(self):
        with storage_errors(self.session, "failed to count difficulties"):
            return self._group_counts(Word.difficulty)

    def bulk_import(self, entries, batch_size=100):
        """
        批量导入单词, 整个导入在一个事务里完成, 任一批失败则全部回滚.

        英文 (不区分大小写) 已存在或在本次导入中重复的条目会被跳过.
        """
        entries = list(entries)
        if not entries:
            raise WordImportError("no words to import")

        logger.info("Starting bulk import of %d words", len(entries))
        imported = 0
        skipped = 0
        with storage_errors(self.session, "failed to import words"):
            seen = {english.lower() for (english,) in self.session.query(Word.english)}
            timestamp = now_ms()
            batch = []
            for entry in entries:
                key = entry.english.lower()
                if key in seen:
                    skipped += 1
                    continue
                seen.add(key)
                batch.append(Word(id=new_id(), created_at=timestamp, updated_at=timestamp,
                                  **entry.model_dump()))
                if len(batch) >= batch_size:
                    self.session.add_all(batch)
                    self.session.flush()
                    imported += len(batch)
                    logger.debug("Batch imported: %d words so far", imported)
                    batch = []
            if batch:
                self.session.add_all(batch)
                self.session.flush()
                imported += len(batch)
            self.session.commit()

        logger.info("Bulk import completed: imported=%d skipped=%d", imported, skipped)
        return ImportResult(imported=imported, skipped=skipped)


class UserStore:

    def __init__(self, session):
        self.session = session

    def _active_query(self):
        return self.session.query(User).filter(User.deleted_at.is_(None))

    def create(self, user):
        with storage_errors(self.session, "failed to create user"):
            self.session.add(user)
            try:
                self.session.commit()
            except IntegrityError as e:
                # 并发注册时唯一索引冲突
                self.session.rollback()
                raise AlreadyExists("username or email already exists") from e
        logger.info("User created: id=%s username=%s", user.id, user.username)
        return user

    def save(self, user):
        with storage_errors(self.session, "failed to update user"):
            self.session.add(user)
            self.session.commit()
        return user

    def get_by_id(self, user_id):
        with storage_errors(self.session, "failed to find user"):
            return self._active_query().filter(User.id == user_id).first()

    def get_by_username_or_email(self, identifier):
        with storage_errors(self.session, "failed to find user"):
            return (self._active_query()
                    .filter(or_(User.username == identifier, User.email == identifier))
                    .first())

    def exists_by_username(self, username):
        # 包含已软删除的用户, 与唯一索引保持一致
        with storage_errors(self.session, "failed to check username existence"):
            return self.session.query(User.id).filter(User.username == username).first() is not None

    def exists_by_email(self, email):
        with storage_errors(self.session, "failed to check email existence"):
            return self.session.query(User.id).filter(User.email == email).first() is not None

    def list_query(self):
        return self._active_query().order_by(User.created_at.asc(), User.id.asc())

    def soft_delete(self, user):
        user.deleted_at = now_ms()
        user.is_active = False
        self.save(user)
        logger.info("User deleted: id=%s", user.id)


class WordTagStore:

    def __init__(self, session):
        self.session = session

    def get(self, word_id, user_id):
        with storage_errors(self.session, "failed to get word tag"):
            return (self.session.query(WordTag)
                    .filter(WordTag.word_id == word_id, WordTag.user_id == user_id)
                    .first())

    def get_or_create(self, word_id, user_id):
        tag = self.get(word_id, user_id)
        if tag is not None:
            return tag

        with storage_errors(self.session, "failed to create word tag"):
            tag = WordTag(word_id=word_id, user_id=user_id, known=None)
            self.session.add(tag)
            try:
                self.session.flush()
            except IntegrityError:
                # 并发请求已经为同一 (word, user) 插入了记录
                self.session.rollback()
                tag = self.get(word_id, user_id)
                if tag is None:
                    raise
        return tag

    def mark_known(self, word_id, user_id):
        tag = self.get_or_create(word_id, user_id)
        with storage_errors(self.session, "failed to mark word as known"):
            tag.mark_as_known()
            self.session.commit()
        return tag

    def remove_mark(self, word_id, user_id):
        """取消标记; 记录不存在时返回 None"""
        tag = self.get(word_id, user_id)
        if tag is None:
            return None
        with storage_errors(self.session, "failed to remove word mark"):
            tag.mark_as_unknown()
            self.session.commit()
        return tag

    def tags_for_words(self, user_id, word_ids):
        """一次查询返回 {word_id: WordTag}"""
        if not word_ids:
            return {}
        with storage_errors(self.session, "failed to get word tags"):
            tags = (self.session.query(WordTag)
                    .filter(WordTag.user_id == user_id, WordTag.word_id.in_(list(word_ids)))
                    .all())
        return {tag.word_id: tag for tag in tags}

    def known_query(self, user_id):
        """用户已认识单词的查询, 最近标记的在前; 只包含词库中仍存在的单词"""
        return (self.session.query(WordTag)
                .join(Word, Word.id == WordTag.word_id)
                .filter(WordTag.user_id == user_id, WordTag.known.isnot(None))
                .order_by(WordTag.known.desc(), WordTag.id.asc()))

    def known_count(self, user_id):
        with storage_errors(self.session, "failed to count known words"):
            return (self.session.query(func.count(WordTag.id))
                    .select_from(WordTag)
                    .join(Word, Word.id == WordTag.word_id)
                    .filter(WordTag.user_id == user_id, WordTag.known.isnot(None))
                    .scalar() or 0)

    def recent_known(self, user_id, limit=RECENT_MARKS_LIMIT):
        with storage_errors(self.session, "failed to get recent marks"):
            return self.known_query(user_id).limit(limit).all()

    def bulk_forget(self, user_id, word_ids):
        """把指定单词的 known 置空, 只统计之前确实认识的记录"""
        with storage_errors(self.session, "failed to bulk remove word marks"):
            affected = (self.session.query(WordTag)
                        .filter(WordTag.user_id == user_id,
                                WordTag.word_id.in_(list(word_ids)),
                                WordTag.known.isnot(None))
                        .update({WordTag.known: None, WordTag.updated_at: now_ms()},
                                synchronize_session=False))
            self.session.commit()
        logger.info("Bulk remove word marks: user_id=%s requested=%d affected=%d",
                    user_id, len(word_ids), affected)
        return affected

    def forget_all(self, user_id):
        with storage_errors(self.session, "failed to remove all word marks"):
            affected = (self.session.query(WordTag)
                        .filter(WordTag.user_id == user_id, WordTag.known.isnot(None))
                        .update({WordTag.known: None, WordTag.updated_at: now_ms()},
                                synchronize_session=False))
            self.session.commit()
        logger.info("All word marks removed: user_id=%s affected=%d", user_id, affected)
        return affected

    def count_all(self):
        with storage_errors(self.session, "failed to count word tags"):
            return self.session.query(func.count(WordTag.id)).scalar() or 0

    def count_known(self):
        with storage_errors(self.session, "failed to count known words"):
            return (self.session.query(func.count(WordTag.id))
                    .filter(WordTag.known.isnot(None))
                    .scalar() or 0)

    def most_recent(self, limit=RECENT_MARKS_LIMIT):
        with storage_errors(self.session, "failed to get recent known words"):
            return (self.session.query(WordTag)
                    .filter(WordTag.known.isnot(None))
                    .order_by(WordTag.known.desc())
                    .limit(limit)
                    .all())
