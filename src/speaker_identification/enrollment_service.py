"""
模板注册服务

校验说话人标签与特征序列，并追加到模板存储
"""

import logging
from typing import Iterable, List, Tuple

from .exceptions import DimensionMismatchError, EmptySequenceError, InvalidLabelError
from .models import FeatureSequence, TemplateRecord
from .template_store import TemplateStore

logger = logging.getLogger(__name__)


class EnrollmentService:
    """
    模板注册服务

    同一标签重复注册会新增一条独立模板（一个说话人可以有多条参考语音）。
    """

    def __init__(self, store: TemplateStore):
        """
        Args:
            store: 模板存储
        """
        self.store = store

    def validate(self, label: str, sequence: FeatureSequence) -> TemplateRecord:
        """
        校验注册输入

        Args:
            label: 说话人标签
            sequence: 特征序列

        Returns:
            待写入的模板记录
        """
        if not isinstance(label, str) or not label.strip():
            raise InvalidLabelError("说话人标签不能为空")
        if '\n' in label or '\r' in label:
            raise InvalidLabelError(f"说话人标签不能包含换行符: {label!r}")
        if not isinstance(sequence, FeatureSequence):
            sequence = FeatureSequence.from_frames(sequence, dimension=self.store.dimension)
        if sequence.is_empty():
            raise EmptySequenceError(f"特征序列为空，无法注册: label={label}")
        if sequence.dimension != self.store.dimension:
            raise DimensionMismatchError(
                f"特征维度 {sequence.dimension} 与存储维度 {self.store.dimension} 不一致"
            )
        return TemplateRecord(label=label, sequence=sequence)

    def enroll(self, label: str, sequence: FeatureSequence) -> TemplateRecord:
        """
        注册一条模板

        Args:
            label: 说话人标签
            sequence: 特征序列

        Returns:
            已写入的模板记录
        """
        record = self.validate(label, sequence)
        self.store.append(record)

        logger.info(f"注册模板成功: label={label}, frames={record.frame_count}")
        return record

    def enroll_many(self, items: Iterable[Tuple[str, FeatureSequence]]) -> List[TemplateRecord]:
        """
        批量注册模板

        先校验全部输入，任何一条不合法则不写入任何记录。

        Args:
            items: (标签, 特征序列) 列表

        Returns:
            已写入的模板记录列表
        """
        records = [self.validate(label, sequence) for label, sequence in items]

        for record in records:
            self.store.append(record)

        logger.info(f"批量注册模板完成: count={len(records)}")
        return records
