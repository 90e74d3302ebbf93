"""
说话人识别引擎

将探测序列与模板存储中的每条模板做 DTW 比较，选出距离最小的模板
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Deque, Dict, Iterator, Optional, Tuple, Union

from .dtw_matcher import DTWMatcher
from .exceptions import (
    DimensionMismatchError,
    EmptySequenceError,
    EmptyStoreError,
    IdentificationCancelledError,
)
from .models import FeatureSequence, MatchingConfig, MatchMode, MatchResult
from .template_store import TemplateStore

logger = logging.getLogger(__name__)

# (插入序号, 标签, 距离)
Candidate = Tuple[int, str, float]


class IdentificationEngine:
    """
    说话人识别引擎

    按插入顺序扫描模板，只有距离严格更小时才替换当前最佳，
    因此距离相同时先注册的模板胜出。并行模式按 (距离, 插入序号) 归约，结果与顺序扫描一致。
    """

    def __init__(
        self,
        store: TemplateStore,
        matcher: Optional[DTWMatcher] = None,
        config: Optional[MatchingConfig] = None
    ):
        """
        初始化识别引擎

        Args:
            store: 模板存储
            matcher: DTW 匹配器（默认按配置创建）
            config: 匹配配置对象
        """
        self.config = config or MatchingConfig()
        self.config.validate()

        self.store = store
        self.matcher = matcher or DTWMatcher(band_padding=self.config.band_padding)

        # 统计信息
        self.total_identifications = 0
        self.total_comparisons = 0
        self.cancelled_identifications = 0
        self.last_elapsed = 0.0

        logger.info(f"IdentificationEngine 初始化: mode={self.config.mode}, "
                    f"band_padding={self.matcher.band_padding}, "
                    f"max_workers={self.config.max_workers}")

    def identify(
        self,
        probe: FeatureSequence,
        mode: Optional[Union[MatchMode, str]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> MatchResult:
        """
        识别探测序列的说话人

        Args:
            probe: 探测特征序列
            mode: 匹配模式，None 表示使用配置中的默认模式
            cancel_event: 取消信号，在两次模板比较之间检查

        Returns:
            匹配结果

        Raises:
            EmptySequenceError: 探测序列为空
            DimensionMismatchError: 探测序列维度与存储不一致
            EmptyStoreError: 存储中没有模板
            CorruptRecordError: 存储中存在损坏记录
            IdentificationCancelledError: 扫描被取消
        """
        mode = self._resolve_mode(mode)

        if len(probe) == 0:
            raise EmptySequenceError("探测序列为空，无法识别")
        if probe.dimension != self.store.dimension:
            raise DimensionMismatchError(
                f"探测序列维度 {probe.dimension} 与存储维度 {self.store.dimension} 不一致"
            )

        start_time = time.perf_counter()

        if self.config.max_workers > 1:
            candidates = self._compare_parallel(probe, mode, cancel_event)
        else:
            candidates = self._compare_sequential(probe, mode, cancel_event)

        best: Optional[Candidate] = None
        label_distances: Dict[str, float] = {}
        scanned = 0

        try:
            for index, label, distance in candidates:
                scanned += 1
                if label not in label_distances or distance < label_distances[label]:
                    label_distances[label] = distance
                # 严格小于才替换：平局保留先插入的模板
                if best is None or distance < best[2]:
                    best = (index, label, distance)
        except IdentificationCancelledError:
            self.cancelled_identifications += 1
            logger.info(f"识别已取消: scanned={scanned}")
            raise

        elapsed = time.perf_counter() - start_time
        self.total_comparisons += scanned
        self.last_elapsed = elapsed

        if best is None:
            logger.debug("模板存储为空，无法识别")
            raise EmptyStoreError("模板存储中没有已注册的模板")

        self.total_identifications += 1

        index, label, distance = best
        result = MatchResult(
            label=label,
            distance=distance,
            elapsed=elapsed,
            template_index=index,
            templates_scanned=scanned,
            mode=mode,
            label_distances=label_distances,
        )

        logger.info(f"识别完成: label={label}, distance={distance:.4f}, "
                    f"templates={scanned}, mode={mode.value}, elapsed={elapsed * 1000:.2f}ms")
        return result

    def _resolve_mode(self, mode: Optional[Union[MatchMode, str]]) -> MatchMode:
        if mode is None:
            return self.config.match_mode
        if isinstance(mode, MatchMode):
            return mode
        try:
            return MatchMode(mode)
        except ValueError:
            raise ValueError(f"不支持的匹配模式: {mode}") from None

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], scanned: int):
        if cancel_event is not None and cancel_event.is_set():
            raise IdentificationCancelledError(f"识别在比较 {scanned} 条模板后被取消")

    def _compare_sequential(
        self,
        probe: FeatureSequence,
        mode: MatchMode,
        cancel_event: Optional[threading.Event]
    ) -> Iterator[Candidate]:
        """逐条比较模板"""
        for index, record in enumerate(self.store.scan()):
            self._check_cancelled(cancel_event, index)
            distance = self.matcher.compute(probe, record.sequence, mode)
            logger.debug(f"模板 {index}: label={record.label}, "
                         f"frames={record.frame_count}, distance={distance:.4f}")
            yield index, record.label, distance

    def _compare_parallel(
        self,
        probe: FeatureSequence,
        mode: MatchMode,
        cancel_event: Optional[threading.Event]
    ) -> Iterator[Candidate]:
        """
        在线程池中比较模板

        最多 window_size 条模板同时在途，结果按插入顺序产出，与完成顺序无关
        """
        window_size = self.window_size
        pending: Deque[Tuple[int, str, Future]] = deque()

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            try:
                for index, record in enumerate(self.store.scan()):
                    self._check_cancelled(cancel_event, index)
                    future = executor.submit(self.matcher.compute, probe, record.sequence, mode)
                    pending.append((index, record.label, future))
                    if len(pending) >= window_size:
                        yield self._collect(pending.popleft(), cancel_event)

                while pending:
                    yield self._collect(pending.popleft(), cancel_event)
            finally:
                for _, _, future in pending:
                    future.cancel()

    @property
    def window_size(self) -> int:
        """并行模式下同时在途的最大模板数"""
        return 2 * self.config.max_workers

    def _collect(
        self,
        entry: Tuple[int, str, Future],
        cancel_event: Optional[threading.Event]
    ) -> Candidate:
        index, label, future = entry
        self._check_cancelled(cancel_event, index)
        distance = future.result()
        logger.debug(f"模板 {index}: label={label}, distance={distance:.4f}")
        return index, label, distance

    def get_statistics(self) -> dict:
        """
        获取识别统计信息

        Returns:
            统计信息字典
        """
        stats = {
            'total_identifications': self.total_identifications,
            'total_comparisons': self.total_comparisons,
            'cancelled_identifications': self.cancelled_identifications,
            'last_elapsed_ms': self.last_elapsed * 1000.0,
            'default_mode': self.config.mode,
            'band_padding': self.matcher.band_padding,
            'max_workers': self.config.max_workers,
        }

        if self.total_identifications > 0:
            stats['avg_comparisons'] = self.total_comparisons / self.total_identifications

        return stats

    def reset_statistics(self):
        """重置统计信息"""
        self.total_identifications = 0
        self.total_comparisons = 0
        self.cancelled_identifications = 0
        self.last_elapsed = 0.0
        logger.info("重置识别统计信息")
