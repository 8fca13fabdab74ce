"""
에러 분류 시스템

데이터 소스 오류를 복구 가능(RECOVERABLE) / 치명적(FATAL)으로 분류하여
설정 조립 루프와 watch 루프의 동작을 결정합니다.

- RECOVERABLE: 소스 일시 접근 불가 (k8s API 장애 등) → 경고 후 해당 레이어 생략
- FATAL: 잘못된 데이터, 알 수 없는 포맷 → 조립 전체 중단
"""

from enum import Enum
from pathlib import Path

import httpx


class ErrorCategory(str, Enum):
    """에러 카테고리"""

    RECOVERABLE = "recoverable"  # 일시적 장애, 소스 접근 불가
    FATAL = "fatal"  # 잘못된 데이터, 설정 오류


class ContemplateError(Exception):
    """contemplate 기본 에러"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.FATAL):
        super().__init__(message)
        self.category = category

    @property
    def is_recoverable(self) -> bool:
        return self.category == ErrorCategory.RECOVERABLE

    @property
    def is_fatal(self) -> bool:
        return self.category == ErrorCategory.FATAL


class SourceError(ContemplateError):
    """데이터 소스 에러

    분류는 소스 타입이 아니라 실패 자체의 속성입니다.
    같은 File 소스라도 확장자 오류와 파싱 오류 모두 FATAL로 보고합니다.
    """

    @classmethod
    def recoverable(cls, message: str) -> "SourceError":
        return cls(message, ErrorCategory.RECOVERABLE)

    @classmethod
    def fatal(cls, message: str) -> "SourceError":
        return cls(message, ErrorCategory.FATAL)


class K8sApiError(SourceError):
    """Kubernetes API 에러 (항상 복구 가능)"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, ErrorCategory.RECOVERABLE)
        self.status_code = status_code


class TemplateRenderError(ContemplateError):
    """템플릿 컴파일/렌더링 에러"""


class BackupCollisionError(ContemplateError):
    """기존 백업 파일이 현재 소스와 다를 때 발생"""

    def __init__(self, backup_path: Path):
        super().__init__(
            f"기존 백업 파일 덮어쓰기 거부: {backup_path}", ErrorCategory.FATAL
        )
        self.backup_path = backup_path


class ReloadError(ContemplateError):
    """시그널 전송 / 프로세스 실행 실패 (시스템 에러)"""


class ConfigurationError(ContemplateError):
    """설정/인자 검증 오류"""


class RegistryAlreadyWatchedError(ContemplateError):
    """SourceRegistry.watch()가 두 번 호출됨"""


class ErrorClassifier:
    """에러 분류기"""

    @classmethod
    def classify(cls, error: Exception) -> ErrorCategory:
        """에러를 분류하여 카테고리 반환

        Args:
            error: 분류할 예외 객체

        Returns:
            ErrorCategory: 복구 가능 여부에 따른 카테고리
        """
        if isinstance(error, ContemplateError):
            return error.category

        if isinstance(error, (httpx.TransportError, TimeoutError, ConnectionError)):
            return ErrorCategory.RECOVERABLE

        return ErrorCategory.FATAL

    @classmethod
    def format_message(cls, error: Exception) -> str:
        """에러 메시지 포맷팅

        Args:
            error: 포맷팅할 예외 객체

        Returns:
            str: 카테고리 라벨이 포함된 에러 메시지
        """
        category = cls.classify(error)
        label = {
            ErrorCategory.RECOVERABLE: "[복구 가능]",
            ErrorCategory.FATAL: "[치명적]",
        }

        return f"{label[category]} {type(error).__name__}: {error}"
