import allure
import pytest
from sqlalchemy.exc import IntegrityError

from errors import (
    CODE_INVALID_MARK_REQUEST,
    ConfirmationRequired,
    UserNotFound,
    ValidationError,
    WordNotFound,
    WordTagNotFound,
)
from models import Word, WordTag
from services import WordTagService

pytestmark = pytest.mark.unit

BLOCKER = allure.severity_level.BLOCKER
CRITICAL = allure.severity_level.CRITICAL
NORMAL = allure.severity_level.NORMAL

MARK_FEATURE = "单词标记"
PROGRESS_FEATURE = "学习进度"
FORGET_FEATURE = "批量忘记"


@pytest.fixture
def service(word_tag_store, word_store, user_store):
    return WordTagService(word_tag_store, word_store, user_store)


@allure.epic("单词标记单元测试")
@allure.feature(MARK_FEATURE)
class TestMarkWords:

    @allure.story("标记")
    @allure.title("标记后状态为已认识")
    @allure.severity(BLOCKER)
    def test_mark_then_status(self, service, user, sample_words):
        """TC_WT_001: 标记后 isMarked 为 True 且 markedAt > 0"""
        cat = sample_words[0]
        result = service.mark_as_known(cat.id, user.id)

        assert result.is_marked is True
        assert result.mark_count == 1
        assert result.message == "单词已标记为认识"

        status = service.get_mark_status(cat.id, user.id)
        assert status.is_marked is True
        assert status.marked_at > 0

    @allure.story("取消标记")
    @allure.title("标记后取消, 状态为未认识")
    @allure.severity(BLOCKER)
    def test_mark_then_remove(self, service, user, sample_words):
        """TC_WT_002: 取消标记把 known 置空, 记录保留"""
        cat = sample_words[0]
        service.mark_as_known(cat.id, user.id)
        result = service.remove_mark(cat.id, user.id)

        assert result.is_marked is False
        status = service.get_mark_status(cat.id, user.id)
        assert status.is_marked is False
        assert status.marked_at is None
        assert WordTag.query.filter_by(word_id=cat.id, user_id=user.id).count() == 1

    @allure.story("取消标记")
    @allure.title("从未标记过的单词不能取消")
    @allure.severity(NORMAL)
    def test_remove_without_tag(self, service, user, sample_words):
        """TC_WT_003: 没有标记记录时报 WordTagNotFound"""
        with pytest.raises(WordTagNotFound):
            service.remove_mark(sample_words[0].id, user.id)

    @allure.story("标记")
    @allure.title("重复标记刷新时间且不产生新记录")
    @allure.severity(CRITICAL)
    def test_mark_twice(self, service, user, sample_words):
        """TC_WT_004: 第二次标记的时间不早于第一次"""
        cat = sample_words[0]
        first = service.mark_as_known(cat.id, user.id)
        second = service.mark_as_known(cat.id, user.id)

        assert second.is_marked is True
        assert second.marked_at >= first.marked_at
        assert WordTag.query.filter_by(word_id=cat.id, user_id=user.id).count() == 1

    @allure.story("参数校验")
    @allure.title("用户或单词不存在")
    @allure.severity(NORMAL)
    def test_missing_user_or_word(self, service, user, sample_words):
        """TC_WT_005: 不存在的用户 / 单词直接报错"""
        with pytest.raises(WordNotFound):
            service.mark_as_known('missing-word', user.id)
        with pytest.raises(UserNotFound):
            service.mark_as_known(sample_words[0].id, 'missing-user')
        with pytest.raises(WordNotFound):
            service.get_mark_status('missing-word', user.id)
        with pytest.raises(UserNotFound):
            service.get_mark_status(sample_words[0].id, 'missing-user')
        with pytest.raises(WordNotFound):
            service.remove_mark('missing-word', user.id)
        with pytest.raises(UserNotFound):
            service.remove_mark(sample_words[0].id, 'missing-user')

    @allure.story("查询状态")
    @allure.title("没有标记记录时返回未认识")
    @allure.severity(NORMAL)
    def test_status_without_tag(self, service, user, sample_words):
        """TC_WT_006: 没有记录不是错误"""
        status = service.get_mark_status(sample_words[1].id, user.id)
        assert status.is_marked is False
        assert status.mark_count == 0

    @allure.story("查询状态")
    @allure.title("批量查询跳过不存在的单词")
    @allure.severity(NORMAL)
    def test_batch_status(self, service, user, sample_words):
        """TC_WT_007: 只返回存在的单词, 顺序与请求一致"""
        cat, dog, _ = sample_words
        service.mark_as_known(dog.id, user.id)

        statuses = service.get_batch_mark_status(user.id, [dog.id, 'missing', cat.id])
        assert [s.word_id for s in statuses] == [dog.id, cat.id]
        assert [s.is_marked for s in statuses] == [True, False]

    @allure.story("并发")
    @allure.title("并发插入同一标记时复用已有记录")
    @allure.severity(CRITICAL)
    def test_get_or_create_race(self, word_tag_store, db_session, user, sample_words, monkeypatch):
        """TC_WT_008: 唯一约束冲突后重新读取"""
        cat = sample_words[0]
        existing = WordTag(word_id=cat.id, user_id=user.id)
        db_session.add(existing)
        db_session.commit()
        existing_id = existing.id

        real_get = word_tag_store.get
        calls = []

        def stale_get(word_id, user_id):
            # 第一次读取模拟另一个请求插入之前的状态
            calls.append(word_id)
            if len(calls) == 1:
                return None
            return real_get(word_id, user_id)

        monkeypatch.setattr(word_tag_store, 'get', stale_get)
        tag = word_tag_store.get_or_create(cat.id, user.id)

        assert tag.id == existing_id
        assert len(calls) == 2

    @allure.story("约束")
    @allure.title("同一用户同一单词只能有一条记录")
    @allure.severity(NORMAL)
    def test_unique_constraint(self, db_session, user, sample_words):
        """TC_WT_009: (word_id, user_id) 唯一"""
        cat = sample_words[0]
        db_session.add(WordTag(word_id=cat.id, user_id=user.id))
        db_session.commit()

        db_session.add(WordTag(word_id=cat.id, user_id=user.id))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


@allure.epic("单词标记单元测试")
@allure.feature(PROGRESS_FEATURE)
class TestProgress:

    @allure.story("学习进度")
    @allure.title("词库为空时进度为 0")
    @allure.severity(CRITICAL)
    def test_progress_empty_corpus(self, service, user):
        """TC_PR_001: 不会除以零"""
        progress = service.get_user_progress(user.id)
        assert progress.known_words == 0
        assert progress.total_words == 0
        assert progress.progress_rate == 0

    @allure.story("学习进度")
    @allure.title("认识 1/3 个单词")
    @allure.severity(NORMAL)
    def test_progress_rate(self, service, user, sample_words):
        """TC_PR_002: progressRate = known / total * 100"""
        service.mark_as_known(sample_words[0].id, user.id)
        progress = service.get_user_progress(user.id)
        assert progress.known_words == 1
        assert progress.total_words == 3
        assert progress.progress_rate == pytest.approx(100 / 3)

    @allure.story("学习统计")
    @allure.title("最近标记按时间倒序")
    @allure.severity(NORMAL)
    def test_user_word_stats(self, service, user, sample_words, db_session):
        """TC_PR_003: 最近标记列表, 最新的在前"""
        cat, dog, _ = sample_words
        service.mark_as_known(cat.id, user.id)
        service.mark_as_known(dog.id, user.id)
        # 固定时间, 避免同一毫秒内的标记
        WordTag.query.filter_by(word_id=cat.id).update({WordTag.known: 1000})
        WordTag.query.filter_by(word_id=dog.id).update({WordTag.known: 2000})
        db_session.commit()

        stats = service.get_user_word_stats(user.id)
        assert stats.known_words_count == 2
        assert stats.total_words_count == 3
        assert [m.word_id for m in stats.recent_marks] == [dog.id, cat.id]
        assert stats.recent_marks[0].known_at == 2000

    @allure.story("全局统计")
    @allure.title("标记记录总数包含已忘记的记录")
    @allure.severity(NORMAL)
    def test_word_tag_stats(self, service, user, admin, sample_words):
        """TC_PR_004: 总记录数与已认识数分开统计"""
        cat, dog, _ = sample_words
        service.mark_as_known(cat.id, user.id)
        service.mark_as_known(dog.id, user.id)
        service.mark_as_known(cat.id, admin.id)
        service.remove_mark(dog.id, user.id)

        stats = service.get_word_tag_stats()
        assert stats.total_word_tags == 3
        assert stats.total_user_marks == 2
        assert len(stats.recent_marks) == 2
        assert all(tag.known is not None for tag in stats.recent_marks)


@allure.epic("单词标记单元测试")
@allure.feature(FORGET_FEATURE)
class TestForget:

    @allure.story("批量忘记")
    @allure.title("只统计之前认识的单词")
    @allure.severity(CRITICAL)
    def test_forget_counts_known_only(self, service, user, sample_words):
        """TC_FG_001: 影响条数 <= 请求条数"""
        cat, dog, bird = sample_words
        service.mark_as_known(cat.id, user.id)
        service.mark_as_known(dog.id, user.id)

        word_ids = [cat.id, bird.id, 'missing']
        result = service.forget_words(user.id, word_ids)

        assert result.forgotten_count == 1
        assert result.forgotten_count <= len(word_ids)
        assert result.word_ids == word_ids
        assert service.get_mark_status(cat.id, user.id).is_marked is False
        assert service.get_mark_status(dog.id, user.id).is_marked is True

    @allure.story("批量忘记")
    @allure.title("不影响其他用户")
    @allure.severity(NORMAL)
    def test_forget_scoped_to_user(self, service, user, admin, sample_words):
        """TC_FG_002: 只修改当前用户的记录"""
        cat = sample_words[0]
        service.mark_as_known(cat.id, user.id)
        service.mark_as_known(cat.id, admin.id)

        assert service.forget_words(user.id, [cat.id]).forgotten_count == 1
        assert service.get_mark_status(cat.id, admin.id).is_marked is True

    @allure.story("批量忘记")
    @allure.title("空列表是非法请求")
    @allure.severity(NORMAL)
    def test_forget_empty(self, service, user):
        """TC_FG_003: 空 wordIds"""
        with pytest.raises(ValidationError) as exc:
            service.forget_words(user.id, [])
        assert exc.value.code == CODE_INVALID_MARK_REQUEST

    @allure.story("全部忘记")
    @allure.title("必须确认")
    @allure.severity(CRITICAL)
    def test_forget_all_requires_confirm(self, service, user, sample_words):
        """TC_FG_004: confirm=False 时报错且不修改数据"""
        service.mark_as_known(sample_words[0].id, user.id)

        with pytest.raises(ConfirmationRequired):
            service.forget_all_words(user.id, False)
        assert service.get_user_progress(user.id).known_words == 1

    @allure.story("全部忘记")
    @allure.title("确认后清空全部已认识单词")
    @allure.severity(NORMAL)
    def test_forget_all(self, service, user, sample_words):
        """TC_FG_005: 返回实际影响的条数, 再次执行为 0"""
        for word in sample_words[:2]:
            service.mark_as_known(word.id, user.id)

        result = service.forget_all_words(user.id, True)
        assert result.forgotten_count == 2
        assert result.message == "已忘光全部 2 个已认识单词"
        assert service.get_user_progress(user.id).known_words == 0
        assert service.forget_all_words(user.id, True).forgotten_count == 0

    @allure.story("删除单词")
    @allure.title("删除单词同时删除标记")
    @allure.severity(NORMAL)
    def test_delete_word_cascades_tags(self, service, word_store, db_session, user, sample_words):
        """TC_FG_006: 不留下孤立的标记记录"""
        cat = sample_words[0]
        cat_id = cat.id
        service.mark_as_known(cat_id, user.id)

        word_store.delete(cat)

        assert db_session.get(Word, cat_id) is None
        assert WordTag.query.filter_by(word_id=cat_id).count() == 0
