"""
contemplate 공통 라이브러리

템플릿 엔진, 실행 계획, 리로드 컨트롤러, 레이어 병합, Kubernetes 클라이언트,
에러 처리 유틸리티 제공.
"""

from .backoff import Backoff, BackoffPolicy
from .engine import TemplateEngine
from .errors import (
    BackupCollisionError,
    ConfigurationError,
    ContemplateError,
    ErrorCategory,
    ErrorClassifier,
    K8sApiError,
    RegistryAlreadyWatchedError,
    ReloadError,
    SourceError,
    TemplateRenderError,
)
from .k8s_client import K8sClient
from .merge import merge, merge_layers, parse_value
from .plan import (
    Plan,
    TemplateDestination,
    TemplateOperation,
    TemplateSource,
    TemplateState,
)
from .reload import (
    Executable,
    NoAction,
    ParentTarget,
    PidTarget,
    ProcessNameTarget,
    ReloadController,
    ShellCommand,
    SignalAction,
    parse_signal,
    parse_signal_target,
)
from .types import SourceKind, SourceSpec

__all__ = [
    # Backoff
    "Backoff",
    "BackoffPolicy",
    # Engine
    "TemplateEngine",
    # Errors
    "BackupCollisionError",
    "ConfigurationError",
    "ContemplateError",
    "ErrorCategory",
    "ErrorClassifier",
    "K8sApiError",
    "RegistryAlreadyWatchedError",
    "ReloadError",
    "SourceError",
    "TemplateRenderError",
    # K8s
    "K8sClient",
    # Merge
    "merge",
    "merge_layers",
    "parse_value",
    # Plan
    "Plan",
    "TemplateDestination",
    "TemplateOperation",
    "TemplateSource",
    "TemplateState",
    # Reload
    "Executable",
    "NoAction",
    "ParentTarget",
    "PidTarget",
    "ProcessNameTarget",
    "ReloadController",
    "ShellCommand",
    "SignalAction",
    "parse_signal",
    "parse_signal_target",
    # Types
    "SourceKind",
    "SourceSpec",
]
