"""
환경변수 데이터 소스

APP_DB_HOST=db (prefix=APP) → {"db": {"host": "db"}}
"""

import os
from collections.abc import Mapping
from typing import Any

from lib.merge import merge, nest, parse_value, split_key

from .base import ConfigurationSource


class EnvironmentSource(ConfigurationSource):
    """환경변수 레이어

    prefix가 있으면 "<PREFIX>_"로 시작하는 변수만 사용하고 접두사를 제거합니다
    (대소문자 무시). 키는 소문자로 바꾼 뒤 '_' 단위로 중첩합니다.
    """

    def __init__(self, prefix: str | None = None, environ: Mapping[str, str] | None = None):
        """
        Args:
            prefix: 변수 접두사 (없으면 전체 환경변수)
            environ: 환경변수 매핑 (기본: os.environ)
        """
        self.prefix = prefix or None
        self._environ = environ

    async def load(self) -> dict[str, Any]:
        environ = os.environ if self._environ is None else self._environ
        prefix = f"{self.prefix}_".lower() if self.prefix else ""

        layer: dict[str, Any] = {}
        for key in sorted(environ):
            if not key.lower().startswith(prefix):
                continue
            segments = split_key(key[len(prefix):])
            if not segments:
                continue
            layer = merge(layer, nest(segments, parse_value(environ[key])))
        return layer

    def __repr__(self) -> str:
        return f"EnvironmentSource(prefix={self.prefix!r})"
