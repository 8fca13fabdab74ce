"""
템플릿 엔진

Jinja2 Environment를 감싸 compile(name, text) / render(name, context)
두 가지 연산만 노출합니다. 컴파일된 템플릿은 Environment 캐시에 공유되며
템플릿끼리 이름으로 include 할 수 있습니다.
"""

import logging
from typing import Any

from jinja2 import ChainableUndefined, DictLoader, Environment, TemplateError

from . import filters
from .errors import TemplateRenderError

logger = logging.getLogger(__name__)


class TemplateEngine:
    """컴파일 캐시를 소유하는 템플릿 엔진"""

    def __init__(self):
        self._sources: dict[str, str] = {}
        self.env = Environment(
            loader=DictLoader(self._sources),
            undefined=ChainableUndefined,
            autoescape=False,
        )
        filters.register(self.env)

    def __contains__(self, name: str) -> bool:
        return name in self._sources

    def compile(self, name: str, text: str) -> None:
        """템플릿 컴파일 및 캐시 등록

        Raises:
            TemplateRenderError: 문법 오류
        """
        self._sources[name] = text
        try:
            self.env.get_template(name)
        except TemplateError as e:
            del self._sources[name]
            raise TemplateRenderError(f"템플릿 컴파일 실패 ({name}): {e}") from e

        logger.debug(f"[Engine] 템플릿 컴파일 완료: {name}")

    def render(self, name: str, context: dict[str, Any]) -> str:
        """캐시된 템플릿 렌더링

        Raises:
            TemplateRenderError: 렌더링 실패
        """
        try:
            return self.env.get_template(name).render(context)
        except TemplateError as e:
            raise TemplateRenderError(f"템플릿 렌더링 실패 ({name}): {e}") from e
