"""
模板数据库

负责持久化已注册的说话人模板，只追加写入、顺序扫描读取
"""

import os
import logging
import math
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, List, Optional, BinaryIO
import numpy as np

from .exceptions import (
    CorruptRecordError,
    DimensionMismatchError,
    EmptySequenceError,
    InvalidLabelError,
    StoreIOError,
)
from .models import FeatureSequence, TemplateRecord, DEFAULT_FEATURE_DIMENSION

logger = logging.getLogger(__name__)

# 记录头中帧数与标签之间的分隔符
FIELD_SEPARATOR = '%'


def encode_record(record: TemplateRecord) -> bytes:
    """
    编码一条模板记录

    格式（UTF-8，每行以 \\n 结尾）:
        <帧数>%<标签>
        <特征值>        # 帧数 × 维度 行，按帧顺序，每行一个值

    Args:
        record: 模板记录

    Returns:
        编码后的字节串
    """
    values = record.sequence.frames.ravel().tolist()
    lines = [f"{len(record.sequence)}{FIELD_SEPARATOR}{record.label}"]
    # repr 是 float 的最短往返表示，解码后逐位相同
    lines.extend(repr(value) for value in values)
    return ('\n'.join(lines) + '\n').encode('utf-8')


def check_encodable(record: TemplateRecord, dimension: int):
    """
    检查记录能否写入存储

    Args:
        record: 模板记录
        dimension: 存储的特征维度
    """
    label = record.label
    if not isinstance(label, str) or not label.strip():
        raise InvalidLabelError("说话人标签不能为空")
    if '\n' in label or '\r' in label:
        raise InvalidLabelError(f"说话人标签不能包含换行符: {label!r}")
    if record.sequence.is_empty():
        raise EmptySequenceError(f"模板序列不能为空: label={label}")
    if record.sequence.dimension != dimension:
        raise DimensionMismatchError(
            f"模板特征维度 {record.sequence.dimension} 与存储维度 {dimension} 不一致"
        )


class TemplateStore(ABC):
    """
    模板存储接口

    记录按插入顺序保存，插入顺序决定识别时的平局归属。
    """

    def __init__(self, dimension: int = DEFAULT_FEATURE_DIMENSION):
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")
        self.dimension = dimension

    @abstractmethod
    def append(self, record: TemplateRecord):
        """追加一条记录"""

    @abstractmethod
    def scan(self) -> Iterator[TemplateRecord]:
        """按插入顺序逐条产生记录，每次调用开始一次新的读取"""

    def count(self) -> int:
        """
        统计记录数量

        Returns:
            记录数
        """
        return sum(1 for _ in self.scan())

    def labels(self) -> List[str]:
        """
        列出所有已注册的标签（按首次注册顺序，去重）

        Returns:
            标签列表
        """
        seen = {}
        for record in self.scan():
            seen.setdefault(record.label, None)
        return list(seen)

    def get_statistics(self) -> dict:
        """
        获取存储统计信息

        Returns:
            统计信息字典
        """
        total_records = 0
        labels = set()
        for record in self.scan():
            total_records += 1
            labels.add(record.label)

        return {
            'total_templates': total_records,
            'total_speakers': len(labels),
            'dimension': self.dimension,
        }


class FileTemplateStore(TemplateStore):
    """
    基于单个追加写文本文件的模板存储

    写入时整条记录一次写出并 fsync，读取时只读到扫描开始时的文件长度，
    因此并发读取方看不到写了一半的记录。
    """

    def __init__(
        self,
        store_path: str = "data/sequences.txt",
        dimension: int = DEFAULT_FEATURE_DIMENSION
    ):
        """
        初始化模板存储

        Args:
            store_path: 存储文件路径（不存在时在首次写入时创建）
            dimension: 每帧特征维度
        """
        super().__init__(dimension)
        self.path = Path(store_path)

        # 单写多读：写入整条记录、读取方获取文件长度快照时都持有此锁
        self._lock = threading.Lock()

        logger.info(f"FileTemplateStore 初始化: path={self.path}, dimension={dimension}")

    def append(self, record: TemplateRecord):
        """
        追加一条模板记录

        Args:
            record: 模板记录
        """
        check_encodable(record, self.dimension)
        payload = encode_record(record)

        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, 'ab') as f:
                    start = f.tell()
                    try:
                        f.write(payload)
                        f.flush()
                        os.fsync(f.fileno())
                    except OSError:
                        # 回滚到写入前的长度，不留下半条记录
                        self._rollback(f, start)
                        raise
            except OSError as e:
                logger.error(f"写入模板失败: label={record.label}, error={e}", exc_info=True)
                raise StoreIOError(f"无法写入模板存储 {self.path}: {e}") from e

        logger.debug(f"追加模板: label={record.label}, frames={record.frame_count}, "
                     f"bytes={len(payload)}")

    def _rollback(self, handle: BinaryIO, size: int):
        try:
            handle.truncate(size)
        except OSError as e:
            logger.error(f"回滚模板存储失败: path={self.path}, error={e}")

    def scan(self) -> Iterator[TemplateRecord]:
        """
        按插入顺序扫描所有模板

        Yields:
            TemplateRecord

        Raises:
            CorruptRecordError: 记录损坏，扫描在此停止
            StoreIOError: 文件无法读取
        """
        with self._lock:
            try:
                limit = self.path.stat().st_size
            except FileNotFoundError:
                logger.debug(f"模板存储文件不存在，视为空: {self.path}")
                return
            except OSError as e:
                raise StoreIOError(f"无法访问模板存储 {self.path}: {e}") from e

        try:
            handle = open(self.path, 'rb')
        except OSError as e:
            raise StoreIOError(f"无法打开模板存储 {self.path}: {e}") from e

        with handle:
            yield from self._decode(handle, limit)

    def _decode(self, handle: BinaryIO, limit: int) -> Iterator[TemplateRecord]:
        """
        从文件中解码记录，最多读取 limit 字节

        Args:
            handle: 二进制文件句柄
            limit: 本次扫描可读取的字节数
        """
        consumed = 0

        def read_line() -> Optional[str]:
            nonlocal consumed
            if consumed >= limit:
                return None
            try:
                raw = handle.readline(limit - consumed)
            except OSError as e:
                raise StoreIOError(f"读取模板存储失败 {self.path}: {e}") from e
            if not raw:
                return None
            consumed += len(raw)
            return raw.rstrip(b'\r\n').decode('utf-8')

        index = 0
        while True:
            try:
                header = read_line()
            except UnicodeDecodeError as e:
                raise CorruptRecordError(index, f"记录头不是合法的 UTF-8: {e}") from e
            if header is None:
                break

            frame_count, label = self._parse_header(header, index)

            n_values = frame_count * self.dimension
            # 每个特征值至少占一个字符加换行符，最后一个可以没有换行
            if n_values > (limit - consumed + 1) // 2:
                raise CorruptRecordError(
                    index, f"声明 {frame_count} 帧，超出文件剩余的 {limit - consumed} 字节"
                )
            values = np.empty(n_values, dtype=np.float64)
            for k in range(n_values):
                try:
                    line = read_line()
                except UnicodeDecodeError as e:
                    raise CorruptRecordError(index, f"第 {k} 个特征值不是合法的 UTF-8") from e
                if line is None:
                    raise CorruptRecordError(
                        index, f"声明 {frame_count} 帧，但文件在第 {k}/{n_values} 个特征值处结束"
                    )
                try:
                    value = float(line)
                except ValueError:
                    raise CorruptRecordError(index, f"第 {k} 个特征值无法解析: {line!r}") from None
                if not math.isfinite(value):
                    raise CorruptRecordError(index, f"第 {k} 个特征值无效: {line!r}")
                values[k] = value

            sequence = FeatureSequence(values.reshape(frame_count, self.dimension))
            yield TemplateRecord(label=label, sequence=sequence)
            index += 1

        logger.debug(f"扫描模板存储完成: path={self.path}, records={index}")

    @staticmethod
    def _parse_header(header: str, index: int):
        """解析记录头 '<帧数>%<标签>'"""
        if FIELD_SEPARATOR not in header:
            raise CorruptRecordError(index, f"记录头缺少分隔符 '{FIELD_SEPARATOR}': {header!r}")

        count_text, label = header.split(FIELD_SEPARATOR, 1)
        try:
            frame_count = int(count_text)
        except ValueError:
            raise CorruptRecordError(index, f"帧数无法解析: {count_text!r}") from None

        if frame_count < 1:
            raise CorruptRecordError(index, f"帧数必须 >= 1: {frame_count}")
        if not label.strip():
            raise CorruptRecordError(index, "标签为空")

        return frame_count, label

    def get_statistics(self) -> dict:
        stats = super().get_statistics()
        stats['total_disk_size_bytes'] = self.path.stat().st_size if self.path.exists() else 0
        stats['store_path'] = str(self.path)
        return stats


class InMemoryTemplateStore(TemplateStore):
    """
    内存模板存储

    与 FileTemplateStore 相同的接口，不做持久化
    """

    def __init__(self, dimension: int = DEFAULT_FEATURE_DIMENSION):
        super().__init__(dimension)
        self._records: List[TemplateRecord] = []
        self._lock = threading.Lock()

    def append(self, record: TemplateRecord):
        check_encodable(record, self.dimension)
        with self._lock:
            self._records.append(record)

    def scan(self) -> Iterator[TemplateRecord]:
        with self._lock:
            snapshot = list(self._records)
        yield from snapshot
