"""
데이터 소스 기본 클래스
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .registry import Notifier


class ConfigurationSource:
    """설정 레이어를 제공하는 데이터 소스

    하위 클래스는 load()를 구현하고, 저장소 변경 감시를 지원하면
    watch()/stop()을 재정의합니다.
    """

    async def load(self) -> dict[str, Any]:
        """현재 레이어 읽기

        Raises:
            SourceError: 복구 가능/치명적 소스 오류
        """
        raise NotImplementedError

    async def watch(self, notifier: "Notifier") -> None:
        """저장소 감시 시작 (기본: 감시 미지원, 핸들 즉시 반납)"""
        await notifier.close()

    async def stop(self) -> None:
        """감시 중지"""
