# importer.py
"""
词库导入

支持两种来源:
    - Excel (.xlsx): 第 1 行为表头, 第 3 列为英文, 第 8 列为中文
    - 文本文件: 每行 "英文<TAB>中文[<TAB>音标<TAB>分类<TAB>难度]" 或 "英文 中文释义"

读取结果是 WordRequest 列表, 由 WordStore.bulk_import 入库.
"""
import logging
import os
import re
from zipfile import BadZipFile

import chardet
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import ValidationError as PydanticValidationError

from errors import WordImportError
from schemas import WordRequest

logger = logging.getLogger(__name__)

# 匹配大部分中文字符
CHINESE_CHAR_PATTERN = re.compile(r'[\u4e00-\u9fff]')

EXCEL_EXTENSIONS = ('.xlsx', '.xlsm')
ENGLISH_COLUMN = 2
CHINESE_COLUMN = 7
MIN_CELLS = 8
TEXT_FIELDS = ('english', 'chinese', 'phonetic', 'category', 'difficulty')


def _cell_text(value):
    if value is None:
        return ''
    return str(value).strip()


def _entry(**fields):
    try:
        return WordRequest(**fields)
    except PydanticValidationError:
        return None


def read_excel_words(source):
    """
    读取 Excel 词库, source 可以是文件路径或二进制文件对象.

    Raises:
        WordImportError: 文件无法读取或没有有效的单词
    """
    try:
        workbook = load_workbook(source, read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as e:
        raise WordImportError(f"failed to open Excel file: {e}") from e

    entries = []
    try:
        for sheet in workbook.worksheets:
            logger.debug("Processing sheet: %s", sheet.title)
            for row in sheet.iter_rows(min_row=2, values_only=True):
                if len(row) < MIN_CELLS:
                    continue
                entry = _entry(english=_cell_text(row[ENGLISH_COLUMN]),
                               chinese=_cell_text(row[CHINESE_COLUMN]))
                if entry is not None:
                    entries.append(entry)
    finally:
        workbook.close()

    if not entries:
        raise WordImportError("no valid words found in the Excel file")

    logger.info("Read %d vocabulary words from Excel", len(entries))
    return entries


def decode_text(raw_data):
    """自动检测编码并解码, 检测不可靠时按 UTF-8 处理"""
    result = chardet.detect(raw_data)
    encoding = result['encoding'] or 'utf-8'
    if result['confidence'] < 0.3:
        encoding = 'utf-8'

    try:
        content = raw_data.decode(encoding)
    except (UnicodeDecodeError, LookupError):
        try:
            content = raw_data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise WordImportError("无法识别该文件编码") from e

    # 包含零字节通常是二进制文件 (比如图片)
    if '\x00' in content:
        raise WordImportError("文件内容非法：检测到二进制流")
    return content


def parse_line(line):
    line = line.strip()
    if not line:
        return None

    if '\t' in line:
        values = [part.strip() for part in line.split('\t')]
        fields = dict(zip(TEXT_FIELDS, values))
        for key in TEXT_FIELDS[2:]:
            if not fields.get(key):
                fields.pop(key, None)
        return _entry(**fields)

    parts = line.split(maxsplit=1)
    if len(parts) < 2:
        # 只有英文没有释义
        return None
    english, chinese = parts
    # 中文在前 "狗 dog"
    if CHINESE_CHAR_PATTERN.search(english) and not CHINESE_CHAR_PATTERN.search(chinese):
        english, chinese = chinese, english
    return _entry(english=english, chinese=chinese)


def read_text_words(raw_data):
    if not raw_data:
        raise WordImportError("file is empty")

    content = decode_text(raw_data)
    entries = []
    skipped = 0
    for line in content.splitlines():
        entry = parse_line(line)
        if entry is None:
            if line.strip():
                skipped += 1
            continue
        entries.append(entry)

    if not entries:
        raise WordImportError("no valid words found in the file")

    logger.info("Read %d vocabulary words from text, skipped %d lines", len(entries), skipped)
    return entries


def read_words(filename, stream):
    """按扩展名选择读取方式"""
    ext = os.path.splitext(filename or '')[1].lower()
    if ext in EXCEL_EXTENSIONS:
        return read_excel_words(stream)
    return read_text_words(stream.read())
