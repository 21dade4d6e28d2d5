# services.py
"""
单词与单词标记业务逻辑

VocabularyService: 单词分页 / 搜索 / 统计, 并为结果附加当前用户的标记状态
WordTagService:    标记 / 取消标记 / 批量忘记 / 学习进度统计
"""
import logging

import re2

from errors import (
    CODE_INVALID_MARK_REQUEST,
    CODE_INVALID_SEARCH_QUERY,
    ConfirmationRequired,
    StorageError,
    UserNotFound,
    ValidationError,
    WordNotFound,
    WordTagNotFound,
    storage_errors,
)
from pager import DEFAULT_PAGE_SIZE, Pager, QuerySource, total_pages
from schemas import (
    ForgetResult,
    KnownWordInfo,
    MarkResult,
    MarkStatus,
    Page,
    SearchResult,
    UserProgress,
    UserWordStats,
    VocabularyStats,
    WordOut,
    WordTagOut,
    WordTagStats,
    WordWithMark,
)

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2


def apply_mark(item, tag=None):
    """把 (可能为空的) 标记状态附加到 WordWithMark 上"""
    if tag is not None and tag.is_known:
        return item.model_copy(update={
            'is_marked': True,
            'mark_count': 1,
            'marked_at': tag.known,
        })
    return item


def progress_rate(known, total):
    if total <= 0:
        return 0.0
    return known / total * 100


class VocabularyService:

    def __init__(self, word_store, word_tag_store, user_store,
                 page_size=DEFAULT_PAGE_SIZE, max_page_size=None):
        self.word_store = word_store
        self.word_tag_store = word_tag_store
        self.user_store = user_store
        self.page_size = page_size
        self.max_page_size = max_page_size

    def _paginate(self, query, page_number, page_size, transform=None, item_type=None):
        """
        page_number 和 page_size 都为空时返回全部数据 (不分页),
        否则按 Pager 的规则取一页.
        """
        page_cls = Page[item_type] if item_type is not None else Page
        with storage_errors(query.session, "failed to get page"):
            if page_number is None and page_size is None:
                items = query.all()
                if transform is not None:
                    items = [transform(item) for item in items]
                total = len(items)
                return page_cls(
                    items=items,
                    total=total,
                    page_number=1,
                    page_size=total,
                    total_pages=1 if total else 0,
                    has_next=False,
                    has_previous=False,
                )
            pager = Pager(QuerySource(query), self.page_size, self.max_page_size)
            return pager.get_page(1 if page_number is None else page_number, page_size, transform, item_type)

    def _require_user(self, user_id):
        user = self.user_store.get_by_id(user_id)
        if user is None:
            logger.error("User not found: user_id=%s", user_id)
            raise UserNotFound(f"user not found: {user_id}")
        return user

    def get_words_by_page(self, page_number=None, page_size=None):
        return self._paginate(self.word_store.page_query(), page_number, page_size,
                              WordOut.model_validate, WordOut)

    def get_words_by_page_with_marks(self, page_number, page_size, user_id):
        page = self._paginate(self.word_store.page_query(), page_number, page_size,
                              WordWithMark.model_validate)
        try:
            tags = self.word_tag_store.tags_for_words(user_id, [item.id for item in page.items])
        except StorageError as e:
            # 标记状态只是附加信息, 查询失败时整页按未标记返回
            logger.warning("Failed to load mark status for page, defaulting to unmarked: %s", e)
            tags = {}

        items = [apply_mark(item, tags.get(item.id)) for item in page.items]
        return Page[WordWithMark](**page.model_dump(exclude={'items'}), items=items)

    def search_words(self, query):
        query = (query or '').strip()
        if len(query) < MIN_QUERY_LENGTH:
            return SearchResult(query=query, results=[], count=0)

        words = self.word_store.search(query)
        results = [WordOut.model_validate(word) for word in words]
        logger.info("Search completed: query=%s results=%d", query, len(results))
        return SearchResult(query=query, results=results, count=len(results))

    def search_words_with_regex(self, query):
        query = (query or '').strip()
        if len(query) < MIN_QUERY_LENGTH:
            return SearchResult(query=query, results=[], count=0)

        try:
            # RE2 匹配时间与输入长度成线性关系
            pattern = re2.compile('(?i)' + query)
        except re2.error as e:
            raise ValidationError(f"invalid regex pattern: {e}", code=CODE_INVALID_SEARCH_QUERY) from e

        results = [
            WordOut.model_validate(word)
            for word in self.word_store.all_words()
            if pattern.search(word.english) or pattern.search(word.chinese)
        ]
        logger.info("Regex search completed: query=%s results=%d", query, len(results))
        return SearchResult(query=query, results=results, count=len(results))

    def get_known_words_by_user(self, user_id, page_number=None, page_size=None):
        """
        用户已认识的单词, 按标记时间倒序.

        先分页取标记, 再一次性查出对应单词, 避免逐条查询.
        """
        self._require_user(user_id)
        tag_page = self._paginate(self.word_tag_store.known_query(user_id), page_number, page_size)
        tags = tag_page.items
        words = {word.id: word for word in self.word_store.get_by_ids([tag.word_id for tag in tags])}

        items = []
        for tag in tags:
            word = words.get(tag.word_id)
            if word is None:
                logger.warning("Known word missing from corpus: word_id=%s", tag.word_id)
                continue
            items.append(apply_mark(WordWithMark.model_validate(word), tag))
        return Page[WordWithMark](**tag_page.model_dump(exclude={'items'}), items=items)

    def get_stats(self):
        total = self.word_store.count()
        return VocabularyStats(
            total_words=total,
            total_pages=total_pages(total, self.page_size),
            page_size=self.page_size,
            categories=self.word_store.category_counts(),
            difficulties=self.word_store.difficulty_counts(),
        )

    def _require_word(self, word_id):
        word = self.word_store.get_by_id(word_id)
        if word is None:
            raise WordNotFound(f"word not found: {word_id}")
        return word

    def get_word(self, word_id):
        return WordOut.model_validate(self._require_word(word_id))

    def get_word_by_english(self, english):
        word = self.word_store.get_by_english(english)
        if word is None:
            raise WordNotFound(f"word not found: {english}")
        return WordOut.model_validate(word)

    def get_words_by_chinese(self, chinese):
        return [WordOut.model_validate(w) for w in self.word_store.find_by_chinese(chinese.strip())]

    def get_words_by_category(self, category):
        return [WordOut.model_validate(w) for w in self.word_store.find_by_category(category)]

    def get_words_by_difficulty(self, difficulty):
        return [WordOut.model_validate(w) for w in self.word_store.find_by_difficulty(difficulty)]

    def get_random_words(self, count):
        if self.max_page_size:
            count = min(count, self.max_page_size)
        return [WordOut.model_validate(w) for w in self.word_store.random(count)]

    def get_word_count(self):
        return self.word_store.count()

    def create_word(self, request):
        word = self.word_store.create(**request.model_dump())
        return WordOut.model_validate(word)

    def update_word(self, word_id, request):
        word = self._require_word(word_id)
        word = self.word_store.update(word, **request.model_dump())
        return WordOut.model_validate(word)

    def delete_word(self, word_id):
        self.word_store.delete(self._require_word(word_id))

    def import_words(self, entries, replace=False):
        if replace:
            self.word_store.delete_all()
        return self.word_store.bulk_import(entries)


class WordTagService:

    def __init__(self, word_tag_store, word_store, user_store):
        self.word_tag_store = word_tag_store
        self.word_store = word_store
        self.user_store = user_store

    def _require_user(self, user_id):
        user = self.user_store.get_by_id(user_id)
        if user is None:
            logger.error("User not found: user_id=%s", user_id)
            raise UserNotFound(f"user not found: {user_id}")
        return user

    def _require_word(self, word_id):
        word = self.word_store.get_by_id(word_id)
        if word is None:
            logger.error("Word not found: word_id=%s", word_id)
            raise WordNotFound(f"word not found: {word_id}")
        return word

    def mark_as_known(self, word_id, user_id):
        """标记为认识; 已认识的单词再次标记会把时间刷新为当前时间"""
        user = self._require_user(user_id)
        word = self._require_word(word_id)

        tag = self.word_tag_store.mark_known(word_id, user_id)

        logger.info("Word marked as known: user_id=%s username=%s word_id=%s english=%s",
                    user_id, user.username, word_id, word.english)
        return MarkResult(
            word_id=word_id,
            is_marked=True,
            mark_count=1,
            marked_at=tag.known,
            message="单词已标记为认识",
        )

    def remove_mark(self, word_id, user_id):
        user = self._require_user(user_id)
        word = self._require_word(word_id)

        tag = self.word_tag_store.remove_mark(word_id, user_id)
        if tag is None:
            raise WordTagNotFound(f"word tag not found for word {word_id}")

        logger.info("Word mark removed: user_id=%s username=%s word_id=%s english=%s",
                    user_id, user.username, word_id, word.english)
        return MarkResult(
            word_id=word_id,
            is_marked=False,
            mark_count=0,
            marked_at=None,
            message="单词标记已移除",
        )

    def get_mark_status(self, word_id, user_id):
        self._require_user(user_id)
        self._require_word(word_id)
        return self._status(word_id, self.word_tag_store.get(word_id, user_id))

    @staticmethod
    def _status(word_id, tag):
        if tag is None or not tag.is_known:
            return MarkStatus(word_id=word_id, is_marked=False, mark_count=0)
        return MarkStatus(word_id=word_id, is_marked=True, mark_count=1, marked_at=tag.known)

    def get_batch_mark_status(self, user_id, word_ids):
        self._require_user(user_id)
        existing = {word.id for word in self.word_store.get_by_ids(word_ids)}
        tags = self.word_tag_store.tags_for_words(user_id, list(existing))

        statuses = []
        for word_id in word_ids:
            if word_id not in existing:
                logger.warning("Word not found, skipping: word_id=%s", word_id)
                continue
            statuses.append(self._status(word_id, tags.get(word_id)))
        return statuses

    def get_user_progress(self, user_id):
        user = self._require_user(user_id)
        known = self.word_tag_store.known_count(user_id)
        total = self.word_store.count()
        rate = progress_rate(known, total)

        logger.info("Retrieved user progress: user_id=%s username=%s known=%d total=%d rate=%.2f",
                    user_id, user.username, known, total, rate)
        return UserProgress(user_id=user_id, known_words=known, total_words=total, progress_rate=rate)

    def get_user_word_stats(self, user_id):
        self._require_user(user_id)
        known = self.word_tag_store.known_count(user_id)
        total = self.word_store.count()
        recent = [KnownWordInfo(word_id=tag.word_id, known_at=tag.known)
                  for tag in self.word_tag_store.recent_known(user_id)]
        return UserWordStats(
            user_id=user_id,
            known_words_count=known,
            total_words_count=total,
            progress_rate=progress_rate(known, total),
            recent_marks=recent,
        )

    def forget_words(self, user_id, word_ids):
        if not word_ids:
            raise ValidationError("no words to forget", code=CODE_INVALID_MARK_REQUEST)

        count = self.word_tag_store.bulk_forget(user_id, word_ids)
        return ForgetResult(
            word_ids=list(word_ids),
            forgotten_count=count,
            message=f"已忘光 {count} 个已认识单词",
        )

    def forget_all_words(self, user_id, confirm):
        if not confirm:
            raise ConfirmationRequired("confirmation required to forget all words")

        count = self.word_tag_store.forget_all(user_id)
        return ForgetResult(
            forgotten_count=count,
            message=f"已忘光全部 {count} 个已认识单词",
        )

    def get_word_tag_stats(self):
        known = self.word_tag_store.count_known()
        return WordTagStats(
            total_word_tags=self.word_tag_store.count_all(),
            # 每个 (单词, 用户) 只有一条记录, 已认识的记录数即标记总数
            total_user_marks=known,
            recent_marks=[WordTagOut.model_validate(tag) for tag in self.word_tag_store.most_recent()],
        )
