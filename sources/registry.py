"""
데이터 소스 레지스트리

순서가 있는 소스 목록을 하나의 스냅샷으로 병합하고, 소스 변경 알림을
단일 슬롯 채널로 모아 재조정 콜백을 호출합니다.

디바운스 규칙:
- 채널에는 대기 중인 깨우기 신호가 최대 1개만 존재
- 슬롯이 차 있으면 송신자는 슬롯이 비워질 때까지 대기 후 반환
  (비워진 직후 시작되는 재조정이 그 변경을 반영)
- 따라서 재조정 중 연속 알림은 최대 1회의 추가 재조정만 유발
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from lib.errors import ErrorClassifier, RegistryAlreadyWatchedError, SourceError
from lib.merge import merge

from .base import ConfigurationSource

logger = logging.getLogger(__name__)


class WatchChannel:
    """용량 1의 깨우기 채널

    모든 송신자(Notifier)가 닫히거나 채널이 닫히면 수신이 종료됩니다.
    """

    def __init__(self):
        self._condition = asyncio.Condition()
        self._pending = False
        self._senders = 0
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def senders(self) -> int:
        return self._senders

    def open_sender(self) -> None:
        self._senders += 1

    async def close_sender(self) -> None:
        async with self._condition:
            self._senders -= 1
            self._condition.notify_all()

    async def send(self) -> None:
        """깨우기 신호 전송 (슬롯이 차 있으면 비워질 때까지 대기)"""
        async with self._condition:
            if self._closed:
                return
            if self._pending:
                await self._condition.wait_for(
                    lambda: not self._pending or self._closed
                )
                return
            self._pending = True
            self._condition.notify_all()

    async def recv(self) -> bool:
        """깨우기 신호 수신

        Returns:
            bool: 신호 수신 시 True, 채널 종료 시 False
        """
        async with self._condition:
            await self._condition.wait_for(
                lambda: self._pending or self._senders <= 0 or self._closed
            )
            if self._closed or not self._pending:
                return False
            self._pending = False
            self._condition.notify_all()
            return True

    async def close(self) -> None:
        """채널 종료 (대기 중인 송신자/수신자 해제)"""
        async with self._condition:
            self._closed = True
            self._condition.notify_all()


class Notifier:
    """소스가 변경을 알리는 핸들

    notify()는 watchdog 등 다른 스레드에서, notify_async()는 이벤트 루프에서
    호출합니다. 소스는 감시를 끝낼 때 close()로 핸들을 반납해야 합니다.
    """

    def __init__(
        self,
        channel: WatchChannel,
        loop: asyncio.AbstractEventLoop,
        source: str,
    ):
        self._channel = channel
        self._loop = loop
        self.source = source
        self.closed = False
        channel.open_sender()

    def notify(self) -> None:
        """변경 알림 (스레드 블로킹)"""
        try:
            asyncio.run_coroutine_threadsafe(self._channel.send(), self._loop).result()
        except RuntimeError as e:
            logger.warning(f"[Registry] 변경 알림 전송 실패: {e}")
            return
        logger.info(f"[Registry] 리로드 트리거: {self.source}")

    async def notify_async(self) -> None:
        """변경 알림 (비동기)"""
        await self._channel.send()
        logger.info(f"[Registry] 리로드 트리거: {self.source}")

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._channel.close_sender()
        logger.debug(f"[Registry] 감시 종료: {self.source}")


OnChange = Callable[["SourceRegistry"], Awaitable[None]]


class SourceRegistry:
    """순서가 있는 데이터 소스 목록

    사용법:
        ```python
        registry = SourceRegistry([FileSource("a.yaml"), EnvironmentSource("APP")])
        snapshot = await registry.as_snapshot()

        async def on_change(registry):
            snapshot = await registry.as_snapshot()
            ...

        await registry.watch(on_change)
        ```
    """

    def __init__(self, sources: Iterable[ConfigurationSource] = ()):
        self.sources: list[ConfigurationSource] = list(sources)
        self._channel = WatchChannel()
        self._watched = False

    @property
    def channel(self) -> WatchChannel:
        return self._channel

    async def as_snapshot(self) -> dict[str, Any]:
        """모든 소스를 순서대로 병합

        복구 가능한 오류는 경고 후 해당 레이어를 건너뜁니다.

        Raises:
            SourceError: 치명적 소스 오류
        """
        snapshot: dict[str, Any] = {}
        for source in self.sources:
            logger.debug(f"[Registry] 소스 읽는 중: {source!r}")
            try:
                layer = await source.load()
            except SourceError as e:
                if e.is_recoverable:
                    logger.warning(
                        f"[Registry] 데이터 소스 사용 불가 {source!r}: "
                        f"{ErrorClassifier.format_message(e)}"
                    )
                    continue
                raise
            snapshot = merge(snapshot, layer)
        return snapshot

    async def watch(self, on_change: OnChange) -> None:
        """소스 감시 시작 및 변경 시 콜백 호출

        모든 소스가 감시를 끝내거나 close()가 호출되면 반환합니다.

        Raises:
            RegistryAlreadyWatchedError: 이미 감시 중인 레지스트리
        """
        if self._watched:
            raise RegistryAlreadyWatchedError("이미 감시 중인 레지스트리입니다")
        self._watched = True

        loop = asyncio.get_running_loop()
        for source in self.sources:
            notifier = Notifier(self._channel, loop, repr(source))
            logger.debug(f"[Registry] 소스 감시 시작: {source!r}")
            await source.watch(notifier)

        while await self._channel.recv():
            await on_change(self)

        logger.debug("[Registry] 모든 감시 종료")

    async def close(self) -> None:
        """모든 소스 감시 중지 및 watch 루프 종료"""
        logger.info("[Registry] 감시 중지")
        await self._channel.close()
        for source in self.sources:
            try:
                await source.stop()
            except Exception as e:
                logger.error(f"[Registry] 소스 중지 실패 {source!r}: {e}")

    def __repr__(self) -> str:
        return f"SourceRegistry({self.sources!r})"
