"""
说话人识别模块

基于 DTW 模板匹配的说话人识别系统，将语音特征序列与已注册的说话人模板比较，选出最接近的模板。
"""

from .speaker_identifier import SpeakerIdentifier
from .identification_engine import IdentificationEngine
from .enrollment_service import EnrollmentService
from .dtw_matcher import DTWMatcher
from .template_store import TemplateStore, FileTemplateStore, InMemoryTemplateStore
from .models import (
    FeatureSequence,
    TemplateRecord,
    MatchResult,
    MatchMode,
    MatchingConfig,
    EvaluationResult,
)
from .exceptions import (
    SpeakerIdentificationError,
    InvalidInputError,
    EmptySequenceError,
    InvalidLabelError,
    DimensionMismatchError,
    StoreIOError,
    CorruptRecordError,
    EmptyStoreError,
    IdentificationCancelledError,
)

__all__ = [
    'SpeakerIdentifier',
    'IdentificationEngine',
    'EnrollmentService',
    'DTWMatcher',
    'TemplateStore',
    'FileTemplateStore',
    'InMemoryTemplateStore',
    'FeatureSequence',
    'TemplateRecord',
    'MatchResult',
    'MatchMode',
    'MatchingConfig',
    'EvaluationResult',
    'SpeakerIdentificationError',
    'InvalidInputError',
    'EmptySequenceError',
    'InvalidLabelError',
    'DimensionMismatchError',
    'StoreIOError',
    'CorruptRecordError',
    'EmptyStoreError',
    'IdentificationCancelledError',
]

__version__ = '1.0.0'
