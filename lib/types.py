"""
공용 타입 정의

데이터 소스 지정 관련 Enum, Dataclass.
"""

from dataclasses import dataclass
from enum import Enum

from .errors import ConfigurationError


class SourceKind(str, Enum):
    """데이터 소스 종류 (CONTEMPLATE_DATASOURCES의 type 값)"""

    FILE = "file"
    ENVIRONMENT = "environment"
    K8S_CONFIGMAP = "k8s-configmap"
    K8S_SECRET = "k8s-secret"


@dataclass(frozen=True)
class SourceSpec:
    """데이터 소스 지정 (종류 + 인자)

    인자 의미:
    - FILE: 파일 경로 (필수)
    - ENVIRONMENT: 변수 접두사 (선택)
    - K8S_CONFIGMAP / K8S_SECRET: 오브젝트 이름 (필수)
    """

    kind: SourceKind
    arg: str | None = None

    @classmethod
    def parse(cls, text: str) -> "SourceSpec":
        """'type:arg' 형식 파싱 (environment는 arg 생략 가능)

        Raises:
            ConfigurationError: 알 수 없는 종류 또는 필수 인자 누락
        """
        kind_text, _, arg = text.strip().partition(":")
        try:
            kind = SourceKind(kind_text.strip().lower())
        except ValueError:
            raise ConfigurationError(f"알 수 없는 데이터 소스 종류: {kind_text!r}") from None

        spec = cls(kind, arg.strip() or None)
        if spec.kind != SourceKind.ENVIRONMENT and not spec.arg:
            raise ConfigurationError(f"데이터 소스 인자 누락: {text!r}")
        return spec

    @classmethod
    def parse_list(cls, text: str) -> list["SourceSpec"]:
        """쉼표로 구분된 목록 파싱 (빈 항목 무시)"""
        return [cls.parse(item) for item in text.split(",") if item.strip()]
