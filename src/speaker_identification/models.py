"""
数据模型定义

定义说话人识别模块使用的数据结构
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Tuple, Iterator, Sequence, Union
import numpy as np

from .exceptions import InvalidInputError, DimensionMismatchError

# 参考系统中每帧 MFCC 特征维度
DEFAULT_FEATURE_DIMENSION = 13


def _is_ragged(frames) -> bool:
    """判断嵌套序列的各帧长度是否不一致"""
    try:
        lengths = {len(frame) for frame in frames}
    except TypeError:
        return False
    return len(lengths) > 1


class MatchMode(Enum):
    """DTW 匹配模式"""
    FULL = "full"      # 完整网格
    BANDED = "banded"  # Sakoe-Chiba 带约束


class FeatureSequence:
    """
    特征序列

    按时间排列的特征帧，每帧为固定维度的实数向量。构造后不可修改。
    """

    __slots__ = ('_frames',)

    def __init__(self, frames: np.ndarray):
        """
        Args:
            frames: 形状为 (n_frames, dimension) 的二维数组
        """
        try:
            frames = np.array(frames, dtype=np.float64)
        except (TypeError, ValueError) as e:
            if _is_ragged(frames):
                raise DimensionMismatchError(f"特征序列各帧维度不一致: {e}") from e
            raise InvalidInputError(f"特征序列包含非数值元素: {e}") from e
        if frames.ndim != 2:
            raise DimensionMismatchError(
                f"特征序列必须是二维数组 (n_frames, dimension)，当前维度: {frames.ndim}"
            )
        if not np.isfinite(frames).all():
            raise InvalidInputError("特征序列包含无效值 (NaN/Inf)")
        frames.setflags(write=False)
        self._frames = frames

    @classmethod
    def from_frames(
        cls,
        frames: Union[np.ndarray, Sequence[Sequence[float]]],
        dimension: Optional[int] = None
    ) -> 'FeatureSequence':
        """
        从帧列表创建特征序列

        Args:
            frames: 帧列表或二维数组
            dimension: 空序列的特征维度（非空时从数据推断）

        Returns:
            FeatureSequence 实例
        """
        if isinstance(frames, np.ndarray):
            if frames.ndim == 2:
                return cls(frames)
            if frames.size == 0:
                return cls(np.empty((0, dimension or 0)))
            raise DimensionMismatchError(
                f"特征序列必须是二维数组 (n_frames, dimension)，当前维度: {frames.ndim}"
            )

        rows = [list(frame) for frame in frames]
        if not rows:
            return cls(np.empty((0, dimension or 0)))

        # 帧内维度必须一致
        expected = len(rows[0])
        for i, row in enumerate(rows):
            if len(row) != expected:
                raise DimensionMismatchError(
                    f"第 {i} 帧维度为 {len(row)}，与第 0 帧维度 {expected} 不一致"
                )

        return cls(rows)

    @property
    def frames(self) -> np.ndarray:
        """只读特征数组 (n_frames, dimension)"""
        return self._frames

    @property
    def dimension(self) -> int:
        """每帧特征维度"""
        return self._frames.shape[1]

    def is_empty(self) -> bool:
        return self._frames.shape[0] == 0

    def __len__(self) -> int:
        return self._frames.shape[0]

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self._frames)

    def __getitem__(self, index):
        return self._frames[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, FeatureSequence):
            return NotImplemented
        return (self._frames.shape == other._frames.shape
                and bool(np.array_equal(self._frames, other._frames)))

    def __hash__(self):
        return hash((self._frames.shape, self._frames.tobytes()))

    def __repr__(self):
        return f"FeatureSequence(frames={len(self)}, dimension={self.dimension})"


@dataclass(frozen=True)
class TemplateRecord:
    """
    已注册的模板记录

    一条参考语音的 (标签, 特征序列)。同一标签可以有多条记录。
    """
    label: str  # 说话人标签
    sequence: FeatureSequence  # 模板特征序列

    @property
    def frame_count(self) -> int:
        return len(self.sequence)


@dataclass
class MatchResult:
    """
    说话人识别结果
    """
    label: str  # 最佳匹配的说话人标签
    distance: float  # DTW 距离 (>= 0)
    elapsed: float  # 扫描耗时（秒），仅用于诊断
    template_index: int = 0  # 最佳模板在存储中的插入序号
    templates_scanned: int = 0  # 比较过的模板数量
    mode: MatchMode = MatchMode.FULL  # 使用的匹配模式
    label_distances: Dict[str, float] = field(default_factory=dict)  # 每个标签的最小距离

    @property
    def elapsed_ms(self) -> float:
        """扫描耗时（毫秒）"""
        return self.elapsed * 1000.0

    def __iter__(self):
        # 支持 label, distance, elapsed = result
        return iter((self.label, self.distance, self.elapsed))

    def __str__(self):
        return (f"MatchResult(label={self.label}, distance={self.distance:.4f}, "
                f"elapsed={self.elapsed_ms:.2f}ms)")


@dataclass
class EvaluationResult:
    """
    批量识别评估结果
    """
    total: int = 0  # 测试样本数
    correct: int = 0  # 识别正确数
    predictions: List[Tuple[str, str, float]] = field(default_factory=list)  # (期望, 预测, 距离)
    elapsed: float = 0.0  # 总耗时（秒）

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total > 0 else 0.0

    def __str__(self):
        return (f"EvaluationResult(correct={self.correct}/{self.total}, "
                f"accuracy={self.accuracy:.2%})")


@dataclass
class MatchingConfig:
    """
    匹配配置
    """
    mode: str = "full"  # 默认匹配模式 (full / banded)
    band_padding: int = 0  # 带宽 = |n - m| + band_padding
    max_workers: int = 1  # 并行比较的线程数，1 表示顺序扫描
    feature_dimension: int = DEFAULT_FEATURE_DIMENSION  # 每帧特征维度

    def validate(self):
        """验证配置有效性"""
        if self.mode not in [m.value for m in MatchMode]:
            raise ValueError(f"mode must be 'full' or 'banded', got {self.mode}")
        for name, minimum in (('band_padding', 0), ('max_workers', 1), ('feature_dimension', 1)):
            value = getattr(self, name)
            # bool 是 int 的子类，需单独排除
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if value < minimum:
                raise ValueError(f"{name} must be >= {minimum}, got {value}")

    @property
    def match_mode(self) -> MatchMode:
        return MatchMode(self.mode)
