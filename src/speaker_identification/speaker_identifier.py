"""
说话人识别协调器

统一的模块入口，协调模板存储、注册服务、识别引擎等子组件
"""

import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union
import yaml

from .dtw_matcher import DTWMatcher
from .enrollment_service import EnrollmentService
from .exceptions import SpeakerIdentificationError
from .identification_engine import IdentificationEngine
from .models import (
    DEFAULT_FEATURE_DIMENSION,
    EvaluationResult,
    FeatureSequence,
    MatchingConfig,
    MatchMode,
    MatchResult,
    TemplateRecord,
)
from .template_store import FileTemplateStore, TemplateStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/speaker_identification_config.yaml"


class IdentifierState(Enum):
    """识别器状态"""
    IDLE = "idle"
    READY = "ready"
    ERROR = "error"


class SpeakerIdentifier:
    """
    说话人识别协调器

    提供模板注册、识别、批量评估的统一接口
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        store: Optional[TemplateStore] = None
    ):
        """
        初始化说话人识别器

        Args:
            config_path: 配置文件路径
            store: 模板存储（默认按配置创建 FileTemplateStore）
        """
        self.state = IdentifierState.IDLE

        # 加载配置
        self.config = self._load_config(config_path)

        # 初始化子组件
        self.store = store
        self.enrollment_service = None
        self.identification_engine = None

        # 统计信息
        self.total_enrollments = 0
        self.total_identifications = 0
        self.failed_identifications = 0

        # 初始化
        self._initialize()

        logger.info("SpeakerIdentifier 初始化完成")

    def _load_config(self, config_path: Optional[str] = None) -> dict:
        """
        加载配置文件

        Args:
            config_path: 配置文件路径

        Returns:
            配置字典
        """
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        config_file = Path(config_path)

        if not config_file.exists():
            logger.warning(f"配置文件不存在: {config_path}，使用默认配置")
            return self._get_default_config()

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f) or {}
            logger.info(f"加载配置文件: {config_path}")
            return config
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"加载配置文件失败: {e}，使用默认配置")
            return self._get_default_config()

    def _get_default_config(self) -> dict:
        """获取默认配置"""
        return {
            'features': {
                'dimension': DEFAULT_FEATURE_DIMENSION,
            },
            'matching': {
                'mode': 'full',
                'band_padding': 0,
                'max_workers': 1,
            },
            'storage': {
                'store_path': 'data/sequences.txt',
            },
        }

    def _initialize(self):
        """初始化各个子组件"""
        try:
            feature_config = self.config.get('features', {})
            matching_config = self.config.get('matching', {})
            storage_config = self.config.get('storage', {})

            dimension = feature_config.get('dimension', DEFAULT_FEATURE_DIMENSION)
            matching = MatchingConfig(
                mode=matching_config.get('mode', 'full'),
                band_padding=matching_config.get('band_padding', 0),
                max_workers=matching_config.get('max_workers', 1),
                feature_dimension=dimension,
            )
            matching.validate()

            # 初始化模板存储
            if self.store is None:
                self.store = FileTemplateStore(
                    store_path=storage_config.get('store_path', 'data/sequences.txt'),
                    dimension=dimension,
                )
            elif self.store.dimension != dimension:
                raise ValueError(f"模板存储维度 {self.store.dimension} 与配置维度 {dimension} 不一致")

            # 注册服务与识别引擎共享同一个存储
            self.enrollment_service = EnrollmentService(self.store)
            self.identification_engine = IdentificationEngine(
                store=self.store,
                matcher=DTWMatcher(band_padding=matching.band_padding),
                config=matching,
            )

            self.state = IdentifierState.READY
            logger.info("所有子组件初始化成功")

        except Exception as e:
            logger.error(f"初始化失败: {e}", exc_info=True)
            self.state = IdentifierState.ERROR
            raise

    def _check_ready(self):
        if self.state != IdentifierState.READY:
            raise RuntimeError(f"识别器状态不正确: {self.state}")

    def enroll(self, label: str, sequence: FeatureSequence) -> TemplateRecord:
        """
        注册说话人模板

        Args:
            label: 说话人标签
            sequence: 特征序列

        Returns:
            已写入的模板记录
        """
        self._check_ready()

        try:
            record = self.enrollment_service.enroll(label, sequence)
        except SpeakerIdentificationError as e:
            logger.error(f"注册说话人失败: label={label!r}, error={e}")
            raise

        self.total_enrollments += 1
        return record

    def enroll_many(self, items: Iterable[Tuple[str, FeatureSequence]]) -> List[TemplateRecord]:
        """
        批量注册说话人模板（训练列表）

        Args:
            items: (标签, 特征序列) 列表

        Returns:
            已写入的模板记录列表
        """
        self._check_ready()

        try:
            records = self.enrollment_service.enroll_many(items)
        except SpeakerIdentificationError as e:
            logger.error(f"批量注册失败: {e}")
            raise

        self.total_enrollments += len(records)
        return records

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
            mode: 匹配模式（full / banded），None 使用配置默认值
            cancel_event: 取消信号

        Returns:
            匹配结果
        """
        self._check_ready()

        if not isinstance(probe, FeatureSequence):
            probe = FeatureSequence.from_frames(probe, dimension=self.store.dimension)

        self.total_identifications += 1

        try:
            return self.identification_engine.identify(probe, mode, cancel_event)
        except SpeakerIdentificationError as e:
            self.failed_identifications += 1
            logger.error(f"识别失败: {e}")
            raise

    def evaluate(
        self,
        test_cases: Iterable[Tuple[str, FeatureSequence]],
        mode: Optional[Union[MatchMode, str]] = None
    ) -> EvaluationResult:
        """
        批量识别测试列表并统计准确率

        Args:
            test_cases: (期望标签, 探测序列) 列表
            mode: 匹配模式

        Returns:
            评估结果
        """
        self._check_ready()

        start_time = time.perf_counter()
        result = EvaluationResult()

        for expected, probe in test_cases:
            match = self.identify(probe, mode)
            result.total += 1
            if match.label == expected:
                result.correct += 1
            result.predictions.append((expected, match.label, match.distance))

            logger.debug(f"评估样本 {result.total}: expected={expected}, "
                         f"predicted={match.label}, distance={match.distance:.4f}")

        result.elapsed = time.perf_counter() - start_time

        logger.info(f"评估完成: correct={result.correct}/{result.total}, "
                    f"accuracy={result.accuracy:.2%}, elapsed={result.elapsed:.2f}s")
        return result

    def get_registered_speakers(self) -> List[str]:
        """
        获取所有已注册的说话人标签

        Returns:
            标签列表
        """
        return self.store.labels()

    def get_statistics(self) -> dict:
        """
        获取识别统计信息

        Returns:
            统计信息字典
        """
        identified = self.total_identifications - self.failed_identifications

        stats = {
            'state': self.state.value,
            'total_enrollments': self.total_enrollments,
            'total_identifications': self.total_identifications,
            'failed_identifications': self.failed_identifications,
            'success_rate': identified / self.total_identifications if self.total_identifications > 0 else 0.0,
            'store': self.store.get_statistics(),
            'matching': self.identification_engine.get_statistics(),
        }

        return stats

    def reset_statistics(self):
        """重置统计信息"""
        self.total_enrollments = 0
        self.total_identifications = 0
        self.failed_identifications = 0
        self.identification_engine.reset_statistics()
        logger.info("统计信息已重置")
