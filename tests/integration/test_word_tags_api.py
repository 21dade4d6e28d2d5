"""
tests/integration/test_word_tags_api.py
单词标记接口集成测试
依赖：conftest.py 中的 sample_words / auth_headers fixture
"""
import allure
import pytest

from errors import (
    CODE_FORGET_CONFIRM_REQUIRED,
    CODE_LOGIN_REQUIRED,
    CODE_PERMISSION_DENIED,
    CODE_VALIDATION_ERROR,
    CODE_WORD_NOT_FOUND,
    CODE_WORD_TAG_NOT_FOUND,
)


def mark(client, headers, word_id):
    return client.post('/api/word-tags/mark', headers=headers, json={'wordId': word_id})


@allure.epic("集成测试类")
@allure.feature("单词标记接口")
@allure.story("标记与取消")
@pytest.mark.integration
class TestMarkApi:

    @allure.title("1. 标记需要登录")
    def test_requires_login(self, test_client, sample_words):
        """TC_TAG_001: 401"""
        response = mark(test_client, {}, sample_words[0].id)
        assert response.status_code == 401
        assert response.get_json()['code'] == CODE_LOGIN_REQUIRED

    @allure.title("2. 标记 / 查询 / 取消")
    def test_mark_status_unmark(self, test_client, sample_words, auth_headers):
        """TC_TAG_002: 完整状态转换"""
        cat_id = sample_words[0].id

        response = mark(test_client, auth_headers, cat_id)
        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['wordId'] == cat_id
        assert data['isMarked'] is True
        assert data['markedAt'] > 0

        data = test_client.get(f'/api/word-tags/status/{cat_id}', headers=auth_headers).get_json()['data']
        assert data['isMarked'] is True
        assert data['markCount'] == 1

        response = test_client.post('/api/word-tags/unmark', headers=auth_headers, json={'wordId': cat_id})
        assert response.get_json()['data']['isMarked'] is False

        data = test_client.get(f'/api/word-tags/status/{cat_id}', headers=auth_headers).get_json()['data']
        assert data['isMarked'] is False
        assert data['markedAt'] is None

    @allure.title("3. 重复标记")
    def test_mark_twice(self, test_client, sample_words, auth_headers):
        """TC_TAG_003: 第二次标记时间不早于第一次"""
        cat_id = sample_words[0].id
        first = mark(test_client, auth_headers, cat_id).get_json()['data']['markedAt']
        second = mark(test_client, auth_headers, cat_id).get_json()['data']['markedAt']
        assert second >= first

    @allure.title("4. 取消从未标记的单词")
    def test_unmark_without_tag(self, test_client, sample_words, auth_headers):
        """TC_TAG_004: 404 WORD_TAG_NOT_FOUND"""
        response = test_client.post('/api/word-tags/unmark', headers=auth_headers,
                                    json={'wordId': sample_words[0].id})
        assert response.status_code == 404
        assert response.get_json()['code'] == CODE_WORD_TAG_NOT_FOUND

    @allure.title("5. 标记不存在的单词或缺少参数")
    def test_mark_invalid(self, test_client, sample_words, auth_headers):
        """TC_TAG_005: 404 / 400"""
        response = mark(test_client, auth_headers, 'missing')
        assert response.status_code == 404
        assert response.get_json()['code'] == CODE_WORD_NOT_FOUND

        response = test_client.post('/api/word-tags/mark', headers=auth_headers, json={})
        assert response.status_code == 400
        assert response.get_json()['code'] == CODE_VALIDATION_ERROR

        response = mark(test_client, auth_headers, '')
        assert response.status_code == 400

    @allure.title("6. 批量查询标记状态")
    def test_batch_status(self, test_client, sample_words, auth_headers):
        """TC_TAG_006: 不存在的单词被跳过"""
        cat_id, dog_id = sample_words[0].id, sample_words[1].id
        mark(test_client, auth_headers, dog_id)

        response = test_client.post('/api/word-tags/status', headers=auth_headers,
                                    json={'wordIds': [cat_id, 'missing', dog_id]})
        data = response.get_json()['data']
        assert [(s['wordId'], s['isMarked']) for s in data] == [(cat_id, False), (dog_id, True)]


@allure.epic("集成测试类")
@allure.feature("单词标记接口")
@allure.story("进度与统计")
@pytest.mark.integration
class TestProgressApi:

    @allure.title("1. 学习进度")
    def test_progress(self, test_client, sample_words, auth_headers):
        """TC_PRG_001: 认识 1 / 3"""
        data = test_client.get('/api/word-tags/progress', headers=auth_headers).get_json()['data']
        assert data['knownWords'] == 0
        assert data['progressRate'] == 0

        mark(test_client, auth_headers, sample_words[0].id)
        data = test_client.get('/api/word-tags/progress', headers=auth_headers).get_json()['data']
        assert data['knownWords'] == 1
        assert data['totalWords'] == 3
        assert data['progressRate'] == pytest.approx(33.333, rel=1e-3)

    @allure.title("2. 已认识单词列表")
    def test_known_words(self, test_client, sample_words, auth_headers):
        """TC_PRG_002: 认识 3 个中的 2 个, 只返回这 2 个"""
        for word in sample_words[:2]:
            mark(test_client, auth_headers, word.id)

        data = test_client.get('/api/word-tags/known', headers=auth_headers).get_json()['data']
        assert sorted(w['english'] for w in data['items']) == ['cat', 'dog']
        assert all(w['isMarked'] for w in data['items'])
        assert all(w['markedAt'] > 0 for w in data['items'])

        data = test_client.get('/api/word-tags/known?page=2&pageSize=1', headers=auth_headers).get_json()['data']
        assert len(data['items']) == 1
        assert data['total'] == 2

    @allure.title("3. 用户学习统计")
    def test_user_stats(self, test_client, sample_words, auth_headers):
        """TC_PRG_003: 最近标记"""
        mark(test_client, auth_headers, sample_words[2].id)
        data = test_client.get('/api/word-tags/user-stats', headers=auth_headers).get_json()['data']
        assert data['knownWordsCount'] == 1
        assert data['totalWordsCount'] == 3
        assert data['recentMarks'][0]['wordId'] == sample_words[2].id
        assert data['recentMarks'][0]['knownAt'] > 0

    @allure.title("4. 全局统计只对管理员开放")
    def test_word_tag_stats(self, test_client, sample_words, auth_headers, admin_headers):
        """TC_PRG_004: 403 / 200"""
        mark(test_client, auth_headers, sample_words[0].id)

        response = test_client.get('/api/word-tags/stats', headers=auth_headers)
        assert response.status_code == 403
        assert response.get_json()['code'] == CODE_PERMISSION_DENIED

        data = test_client.get('/api/word-tags/stats', headers=admin_headers).get_json()['data']
        assert data['totalWordTags'] == 1
        assert data['totalUserMarks'] == 1
        assert data['recentMarks'][0]['wordId'] == sample_words[0].id


@allure.epic("集成测试类")
@allure.feature("单词标记接口")
@allure.story("忘记")
@pytest.mark.integration
class TestForgetApi:

    @allure.title("1. 批量忘记")
    def test_forget(self, test_client, sample_words, auth_headers):
        """TC_FGT_001: 只统计之前认识的单词"""
        cat_id, dog_id, bird_id = (w.id for w in sample_words)
        mark(test_client, auth_headers, cat_id)
        mark(test_client, auth_headers, dog_id)

        response = test_client.post('/api/word-tags/forget', headers=auth_headers,
                                    json={'wordIds': [cat_id, bird_id]})
        body = response.get_json()
        assert body['data']['forgottenCount'] == 1
        assert body['msg'] == '已忘光 1 个已认识单词'

        response = test_client.post('/api/word-tags/forget', headers=auth_headers, json={'wordIds': []})
        assert response.status_code == 400

    @allure.title("2. 全部忘记需要确认")
    def test_forget_all(self, test_client, sample_words, auth_headers):
        """TC_FGT_002: confirm=false 返回 400, confirm=true 清空"""
        for word in sample_words:
            mark(test_client, auth_headers, word.id)

        response = test_client.post('/api/word-tags/forget-all', headers=auth_headers, json={})
        assert response.status_code == 400
        assert response.get_json()['code'] == CODE_FORGET_CONFIRM_REQUIRED

        response = test_client.post('/api/word-tags/forget-all', headers=auth_headers, json={'confirm': True})
        assert response.get_json()['data']['forgottenCount'] == 3

        data = test_client.get('/api/word-tags/progress', headers=auth_headers).get_json()['data']
        assert data['knownWords'] == 0
