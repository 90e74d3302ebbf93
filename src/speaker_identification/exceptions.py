"""
异常定义

说话人识别模块的错误类型，全部以类型化异常抛给调用方
"""


class SpeakerIdentificationError(Exception):
    """说话人识别模块所有异常的基类"""


class InvalidInputError(SpeakerIdentificationError, ValueError):
    """输入不合法（空序列、空标签、维度不一致等）"""


class EmptySequenceError(InvalidInputError):
    """特征序列为空"""


class InvalidLabelError(InvalidInputError):
    """说话人标签不合法"""


class DimensionMismatchError(InvalidInputError):
    """特征维度不一致"""


class StoreIOError(SpeakerIdentificationError, OSError):
    """模板存储读写失败"""


class CorruptRecordError(SpeakerIdentificationError):
    """
    模板存储中的记录损坏

    Attributes:
        index: 损坏记录的序号（从 0 开始）
        reason: 损坏原因
    """

    def __init__(self, index: int, reason: str = ""):
        self.index = index
        self.reason = reason
        message = f"第 {index} 条模板记录损坏"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class EmptyStoreError(SpeakerIdentificationError):
    """模板存储为空，无法识别"""


class IdentificationCancelledError(SpeakerIdentificationError):
    """识别扫描被取消"""
