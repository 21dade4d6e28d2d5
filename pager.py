# pager.py
"""
分页计算

Pager 只依赖"可计数 + 可切片"的数据源, 内存列表和数据库查询共用同一套
页码规则:
    - 页码从 1 开始, 小于 1 视为非法参数
    - 超过最后一页返回空列表, 总数和总页数照常给出
"""
import math

from errors import CODE_INVALID_PAGE, CODE_INVALID_PAGE_SIZE, ValidationError
from schemas import Page

DEFAULT_PAGE_SIZE = 12


class ListSource:
    """内存列表数据源"""

    def __init__(self, items):
        self.items = list(items)

    def count(self):
        return len(self.items)

    def slice(self, offset, limit):
        return self.items[offset:offset + limit]


class QuerySource:
    """SQLAlchemy 查询数据源, 排序由调用方在 query 上指定"""

    def __init__(self, query):
        self.query = query

    def count(self):
        return self.query.order_by(None).count()

    def slice(self, offset, limit):
        return self.query.offset(offset).limit(limit).all()


class Pager:

    def __init__(self, source, page_size=DEFAULT_PAGE_SIZE, max_page_size=None):
        self.source = source
        self.page_size = page_size if page_size and page_size > 0 else DEFAULT_PAGE_SIZE
        self.max_page_size = max_page_size

    def _resolve_page_size(self, page_size):
        if page_size is None:
            return self.page_size
        if page_size < 1:
            raise ValidationError(f"page size {page_size} must be positive", code=CODE_INVALID_PAGE_SIZE)
        if self.max_page_size and page_size > self.max_page_size:
            return self.max_page_size
        return page_size

    def get_total_count(self):
        return self.source.count()

    def get_total_pages(self, page_size=None, total=None):
        page_size = self._resolve_page_size(page_size)
        if total is None:
            total = self.get_total_count()
        return total_pages(total, page_size)

    def has_next(self, page_number, page_size=None):
        return page_number < self.get_total_pages(page_size)

    def has_previous(self, page_number):
        return page_number > 1

    def get_page_range(self, page_number, page_size=None):
        """
        返回第 page_number 页的起止序号 (从 1 开始, 闭区间).
        超出最后一页时返回 (0, 0).
        """
        page_size = self._resolve_page_size(page_size)
        _check_page_number(page_number)
        total = self.get_total_count()
        if page_number > total_pages(total, page_size):
            return 0, 0
        start = (page_number - 1) * page_size + 1
        end = min(page_number * page_size, total)
        return start, end

    def get_page(self, page_number, page_size=None, transform=None, item_type=None):
        page_size = self._resolve_page_size(page_size)
        _check_page_number(page_number)

        total = self.get_total_count()
        pages = total_pages(total, page_size)
        items = []
        if page_number <= pages:
            items = self.source.slice((page_number - 1) * page_size, page_size)
        if transform is not None:
            items = [transform(item) for item in items]

        page_cls = Page[item_type] if item_type is not None else Page
        return page_cls(
            items=items,
            total=total,
            page_number=page_number,
            page_size=page_size,
            total_pages=pages,
            has_next=page_number < pages,
            has_previous=page_number > 1,
        )


def total_pages(total, page_size):
    if total <= 0 or not page_size or page_size <= 0:
        return 0
    return int(math.ceil(total / page_size))


def _check_page_number(page_number):
    if page_number is None or page_number < 1:
        raise ValidationError(f"page number {page_number} must be >= 1", code=CODE_INVALID_PAGE)
