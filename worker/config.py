"""
실행 환경 설정

환경변수 기반 설정 관리.
- CONTEMPLATE_DATASOURCES: 쉼표로 구분된 'type:arg' 데이터 소스 목록
- CONTEMPLATE_K8S_NAMESPACE: 기본 Kubernetes 네임스페이스
- CONTEMPLATE_LOG: 로그 레벨 이름 (-v/-q 보다 우선)
- KUBECONFIG: kubeconfig 경로
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from lib.errors import ConfigurationError
from lib.types import SourceSpec

logger = logging.getLogger(__name__)

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "WARN", "INFO", "DEBUG", "NOTSET")


@dataclass
class WorkerConfig:
    """환경변수 설정"""

    datasources: str = ""
    k8s_namespace: str | None = None
    log_level: str | None = None
    kubeconfig: str | None = None

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        """환경변수에서 설정 로드"""
        return cls(
            datasources=os.getenv("CONTEMPLATE_DATASOURCES", ""),
            k8s_namespace=os.getenv("CONTEMPLATE_K8S_NAMESPACE") or None,
            log_level=os.getenv("CONTEMPLATE_LOG") or None,
            kubeconfig=os.getenv("KUBECONFIG") or None,
        )

    def source_specs(self) -> list[SourceSpec]:
        """CONTEMPLATE_DATASOURCES 파싱

        Raises:
            ConfigurationError: 잘못된 데이터 소스 지정
        """
        return SourceSpec.parse_list(self.datasources)

    def resolve_log_level(self, default: int) -> int:
        """CONTEMPLATE_LOG가 있으면 해당 레벨, 없으면 default"""
        if not self.log_level:
            return default
        level = logging.getLevelName(self.log_level.strip().upper())
        return level if isinstance(level, int) else default

    def validate(self, strict: bool = True) -> list[str]:
        """설정값 검증

        Args:
            strict: True면 오류 시 예외 발생, False면 경고만

        Returns:
            list[str]: 검증 경고/오류 메시지 목록

        Raises:
            ConfigurationError: strict=True이고 오류가 있을 때
        """
        errors = []
        warnings = []

        try:
            self.source_specs()
        except ConfigurationError as e:
            errors.append(f"잘못된 CONTEMPLATE_DATASOURCES: {e}")

        if self.log_level and self.log_level.strip().upper() not in LOG_LEVELS:
            errors.append(f"잘못된 CONTEMPLATE_LOG 값: {self.log_level}")

        if self.kubeconfig:
            first = self.kubeconfig.split(os.pathsep)[0]
            if first and not Path(first).expanduser().exists():
                warnings.append(f"kubeconfig 파일 없음: {first}")

        for warning in warnings:
            logger.warning(f"[Config] {warning}")

        if errors:
            for error in errors:
                logger.error(f"[Config] {error}")
            if strict:
                raise ConfigurationError(
                    f"설정 검증 실패: {len(errors)}개 오류\n" + "\n".join(errors)
                )

        return errors + warnings
