"""
Kubernetes ConfigMap / Secret 데이터 소스

키 변환: 소문자화 후 '_' → '.' 중첩 (DB_HOST → db.host)
- ConfigMap 값: 환경변수와 같은 규칙으로 해석
- Secret 값: {"bytes": 원본 바이트, "string": UTF-8 문자열 (디코딩 가능할 때만)}

조회 실패, 오브젝트 없음, data 없음은 모두 복구 가능한 오류입니다.

감시:
1. 오브젝트 조회 (resourceVersion, 지문 기록)
2. metadata.name 필터 watch 스트림
3. 지문 (metadata.generation, 없으면 data 해시)이 바뀐 경우에만 알림
4. 일시적 오류 (연결, 5xx, 410 Gone, ERROR 이벤트)는 백오프 후 재조회
"""

import asyncio
import base64
import hashlib
import json
import logging
from contextlib import aclosing
from typing import Any

from lib.backoff import BackoffPolicy
from lib.errors import K8sApiError, SourceError
from lib.k8s_client import CONFIGMAPS, SECRETS, K8sClient
from lib.merge import merge, nest, parse_value, split_key

from .base import ConfigurationSource
from .registry import Notifier

logger = logging.getLogger(__name__)


def fingerprint(obj: dict[str, Any]) -> str:
    """변경 판단용 지문 (generation 우선, 없으면 data 해시)"""
    generation = (obj.get("metadata") or {}).get("generation")
    if generation is not None:
        return f"generation:{generation}"
    payload = json.dumps(obj.get("data") or {}, sort_keys=True)
    return f"sha256:{hashlib.sha256(payload.encode()).hexdigest()}"


def _segments(key: str) -> list[str]:
    return split_key(key.replace("_", "."), ".")


class K8sObjectSource(ConfigurationSource):
    """네임스페이스 오브젝트 하나의 data를 레이어로 제공하는 소스"""

    kind = ""

    def __init__(
        self,
        name: str,
        namespace: str | None = None,
        client: K8sClient | None = None,
        kubeconfig: str | None = None,
        backoff: BackoffPolicy | None = None,
    ):
        """
        Args:
            name: 오브젝트 이름
            namespace: 네임스페이스 (None이면 클라이언트 기본값)
            client: API 클라이언트 (None이면 환경에서 탐색)
            kubeconfig: kubeconfig 경로 (client가 없을 때)
            backoff: watch 재연결 백오프 정책
        """
        self.name = name
        self.namespace = namespace
        self.kubeconfig = kubeconfig
        self.backoff = backoff or BackoffPolicy()
        self._client = client
        self._task: asyncio.Task | None = None

    def _get_client(self) -> K8sClient:
        if self._client is None:
            self._client = K8sClient.from_env(self.kubeconfig)
        return self._client

    def _to_layer(self, data: dict[str, str]) -> dict[str, Any]:
        raise NotImplementedError

    async def load(self) -> dict[str, Any]:
        obj = await self._get_client().get_object(self.kind, self.name, self.namespace)
        data = obj.get("data")
        if data is None:
            raise SourceError.recoverable(f"{self.kind}/{self.name}에 data가 없습니다")
        try:
            return self._to_layer(data)
        except ValueError as e:
            raise SourceError.recoverable(f"{self.kind}/{self.name} data 해석 실패: {e}") from e

    async def watch(self, notifier: Notifier) -> None:
        self._task = asyncio.create_task(self._watch_loop(notifier))

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _watch_loop(self, notifier: Notifier) -> None:
        backoff = self.backoff.start()
        known = False
        current: str | None = None
        resource_version: str | None = None

        try:
            while True:
                try:
                    client = self._get_client()
                    if resource_version is None:
                        try:
                            obj = await client.get_object(
                                self.kind, self.name, self.namespace
                            )
                        except K8sApiError as e:
                            if e.status_code == 404:
                                # 오브젝트가 생성되면 알림
                                known, current = True, None
                            raise

                        resource_version = (obj.get("metadata") or {}).get(
                            "resourceVersion"
                        )
                        latest = fingerprint(obj)
                        if known and latest != current:
                            await notifier.notify_async()
                        known, current = True, latest
                        backoff.reset()

                    received = False
                    events = client.watch(
                        self.kind, self.name, self.namespace, resource_version
                    )
                    async with aclosing(events):
                        async for event in events:
                            received = True
                            event_type = event.get("type")
                            obj = event.get("object") or {}

                            if event_type == "ERROR":
                                raise K8sApiError(
                                    f"watch 오류 이벤트: {obj.get('message', obj)}",
                                    obj.get("code"),
                                )

                            resource_version = (obj.get("metadata") or {}).get(
                                "resourceVersion", resource_version
                            )
                            backoff.reset()

                            if event_type not in ("ADDED", "MODIFIED"):
                                continue

                            latest = fingerprint(obj)
                            if latest != current:
                                current = latest
                                await notifier.notify_async()

                    # 이벤트 없이 끝난 스트림은 백오프 후 재연결
                    if not received:
                        await asyncio.sleep(backoff.next_delay())

                except (K8sApiError, OSError) as e:
                    delay = backoff.next_delay()
                    logger.warning(
                        f"[K8sSource] {self!r} watch 오류, {delay:.1f}초 후 재시도: {e}"
                    )
                    resource_version = None
                    await asyncio.sleep(delay)
        finally:
            await notifier.close()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, namespace={self.namespace!r})"
        )


class K8sConfigMapSource(K8sObjectSource):
    """ConfigMap 레이어"""

    kind = CONFIGMAPS

    def _to_layer(self, data: dict[str, str]) -> dict[str, Any]:
        layer: dict[str, Any] = {}
        for key in sorted(data):
            segments = _segments(key)
            if segments:
                layer = merge(layer, nest(segments, parse_value(data[key])))
        return layer


class K8sSecretSource(K8sObjectSource):
    """Secret 레이어 (값은 API 응답의 base64를 디코딩한 바이트)"""

    kind = SECRETS

    def _to_layer(self, data: dict[str, str]) -> dict[str, Any]:
        layer: dict[str, Any] = {}
        for key in sorted(data):
            segments = _segments(key)
            if not segments:
                continue

            raw = base64.b64decode(data[key] or "")
            value: dict[str, Any] = {"bytes": raw}
            try:
                value["string"] = raw.decode("utf-8")
            except UnicodeDecodeError:
                pass

            layer = merge(layer, nest(segments, value))
        return layer
