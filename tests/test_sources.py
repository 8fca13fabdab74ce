"""
데이터 소스 테스트

파일, 환경변수, Kubernetes ConfigMap/Secret 레이어 테스트.
"""

import asyncio
import base64
import json
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from lib.backoff import BackoffPolicy
from lib.errors import ErrorCategory, K8sApiError, SourceError
from lib.k8s_client import K8sClient
from lib.types import SourceKind, SourceSpec
from sources import (
    EnvironmentSource,
    FileSource,
    K8sConfigMapSource,
    K8sSecretSource,
    build_source,
)
from sources.k8s import fingerprint


class TestFileSource:
    """FileSource 테스트"""

    @pytest.mark.asyncio
    async def test_yaml(self, yaml_file):
        path = yaml_file("a.yaml", {"Server": {"port": 80}})

        assert await FileSource(path).load() == {"Server": {"port": 80}}

    @pytest.mark.asyncio
    async def test_json(self, json_file):
        path = json_file("a.JSON", {"x": [1, 2]})

        assert await FileSource(path).load() == {"x": [1, 2]}

    @pytest.mark.asyncio
    async def test_toml(self, tmp_path: Path):
        path = tmp_path / "a.toml"
        path.write_text('[db]\nhost = "localhost"\n')

        assert await FileSource(path).load() == {"db": {"host": "localhost"}}

    @pytest.mark.asyncio
    async def test_yaml_merge_keys(self, tmp_path: Path):
        path = tmp_path / "a.yml"
        path.write_text("base: &base\n  a: 1\nderived:\n  <<: *base\n  b: 2\n")

        layer = await FileSource(path).load()

        assert layer["derived"] == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path: Path):
        assert await FileSource(tmp_path / "later.yaml").load() == {}

    @pytest.mark.asyncio
    async def test_unknown_extension_is_fatal(self, tmp_path: Path):
        path = tmp_path / "a.ini"
        path.write_text("[a]\nb=1\n")

        with pytest.raises(SourceError) as exc_info:
            await FileSource(path).load()
        assert exc_info.value.category == ErrorCategory.FATAL

    @pytest.mark.asyncio
    async def test_no_extension_is_fatal(self, tmp_path: Path):
        with pytest.raises(SourceError) as exc_info:
            await FileSource(tmp_path / "config").load()
        assert exc_info.value.is_fatal

    @pytest.mark.asyncio
    async def test_parse_error_is_fatal(self, tmp_path: Path):
        path = tmp_path / "a.json"
        path.write_text("{broken")

        with pytest.raises(SourceError) as exc_info:
            await FileSource(path).load()
        assert exc_info.value.is_fatal

    @pytest.mark.asyncio
    async def test_top_level_must_be_mapping(self, tmp_path: Path):
        path = tmp_path / "a.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(SourceError):
            await FileSource(path).load()


class TestEnvironmentSource:
    """EnvironmentSource 테스트"""

    @pytest.mark.asyncio
    async def test_prefix_stripped_and_nested(self):
        environ = {"APP_DB_HOST": "db", "APP_DB_PORT": "5432", "OTHER": "x"}

        layer = await EnvironmentSource("APP", environ).load()

        assert layer == {"db": {"host": "db", "port": 5432}}

    @pytest.mark.asyncio
    async def test_prefix_case_insensitive(self):
        layer = await EnvironmentSource("app", {"APP_X": "1", "app_y": "2"}).load()

        assert layer == {"x": 1, "y": 2}

    @pytest.mark.asyncio
    async def test_no_prefix_uses_everything(self):
        layer = await EnvironmentSource(None, {"HOME": "/root", "DEBUG": "true"}).load()

        assert layer == {"home": "/root", "debug": True}

    @pytest.mark.asyncio
    async def test_value_parsing(self):
        environ = {"APP_LIST": "[1, 2]", "APP_NAME": "'quoted'", "APP_RATE": "0.5"}

        layer = await EnvironmentSource("APP", environ).load()

        assert layer == {"list": [1, 2], "name": "quoted", "rate": 0.5}

    @pytest.mark.asyncio
    async def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv("CTPTEST_VALUE", "7")

        assert await EnvironmentSource("CTPTEST").load() == {"value": 7}


def _k8s_client(handler) -> K8sClient:
    return K8sClient(
        server="https://k8s.test",
        token="test-token",
        namespace="default",
        transport=httpx.MockTransport(handler),
    )


def _configmap(data, resource_version="1"):
    return {
        "kind": "ConfigMap",
        "metadata": {"name": "app", "resourceVersion": resource_version},
        "data": data,
    }


class TestK8sSources:
    """ConfigMap / Secret 레이어 테스트"""

    @pytest.mark.asyncio
    async def test_configmap_layer(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200, json=_configmap({"DB_HOST": "db", "DB_PORT": "5432", "log.level": "info"})
            )

        source = K8sConfigMapSource("app", "prod", client=_k8s_client(handler))

        layer = await source.load()

        assert layer == {"db": {"host": "db", "port": 5432}, "log": {"level": "info"}}
        assert requests[0].url.path == "/api/v1/namespaces/prod/configmaps/app"
        assert requests[0].headers["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_default_namespace(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json=_configmap({}))

        await K8sConfigMapSource("app", client=_k8s_client(handler)).load()

        assert paths == ["/api/v1/namespaces/default/configmaps/app"]

    @pytest.mark.asyncio
    async def test_secret_layer(self):
        data = {
            "API_TOKEN": base64.b64encode(b"s3cret").decode(),
            "BINARY": base64.b64encode(b"\xff\xfe").decode(),
        }

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/secrets/creds")
            return httpx.Response(200, json={"metadata": {}, "data": data})

        layer = await K8sSecretSource("creds", client=_k8s_client(handler)).load()

        assert layer["api"]["token"] == {"bytes": b"s3cret", "string": "s3cret"}
        assert layer["binary"] == {"bytes": b"\xff\xfe"}

    @pytest.mark.asyncio
    async def test_missing_object_is_recoverable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"kind": "Status", "code": 404})

        with pytest.raises(K8sApiError) as exc_info:
            await K8sConfigMapSource("app", client=_k8s_client(handler)).load()
        assert exc_info.value.is_recoverable
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_data_is_recoverable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"metadata": {"name": "app"}})

        with pytest.raises(SourceError) as exc_info:
            await K8sConfigMapSource("app", client=_k8s_client(handler)).load()
        assert exc_info.value.is_recoverable

    @pytest.mark.asyncio
    async def test_transport_error_is_recoverable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(K8sApiError) as exc_info:
            await K8sSecretSource("creds", client=_k8s_client(handler)).load()
        assert exc_info.value.is_recoverable


class TestK8sWatch:
    """ConfigMap watch 테스트"""

    def test_fingerprint_prefers_generation(self):
        obj = {"metadata": {"generation": 3}, "data": {"a": "1"}}

        assert fingerprint(obj) == "generation:3"

    def test_fingerprint_data_hash(self):
        assert fingerprint(_configmap({"a": "1"})) == fingerprint(_configmap({"a": "1"}, "9"))
        assert fingerprint(_configmap({"a": "1"})) != fingerprint(_configmap({"a": "2"}))

    @pytest.mark.asyncio
    async def test_notifies_only_on_content_change(self):
        """resourceVersion만 바뀐 이벤트는 무시, data 변경 시 알림"""
        events = [
            {"type": "MODIFIED", "object": _configmap({"a": "1"}, "2")},
            {"type": "MODIFIED", "object": _configmap({"a": "2"}, "3")},
            {"type": "DELETED", "object": _configmap({"a": "2"}, "4")},
        ]
        watch_requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("watch") == "true":
                watch_requests.append(request)
                if len(watch_requests) > 1:
                    return httpx.Response(200, content=b"")
                body = "\n".join(json.dumps(event) for event in events) + "\n"
                return httpx.Response(200, content=body.encode())
            return httpx.Response(200, json=_configmap({"a": "1"}, "1"))

        notified = asyncio.Event()
        notifications = []

        class FakeNotifier:
            closed = False

            async def notify_async(self):
                notifications.append(1)
                notified.set()

            async def close(self):
                self.closed = True

        notifier = FakeNotifier()
        source = K8sConfigMapSource("app", client=_k8s_client(handler))

        await source.watch(notifier)
        await asyncio.wait_for(notified.wait(), timeout=5)
        await asyncio.sleep(0.05)
        await source.stop()

        assert notifications == [1]
        assert notifier.closed
        first = watch_requests[0].url.params
        assert first["fieldSelector"] == "metadata.name=app"
        assert first["resourceVersion"] == "1"

    @pytest.mark.asyncio
    async def test_error_event_relists(self):
        """410 Gone 등 ERROR 이벤트 후 재조회 (변경이 있으면 알림)"""
        state = {"gets": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("watch") == "true":
                error = {"type": "ERROR", "object": {"code": 410, "message": "too old"}}
                return httpx.Response(200, content=(json.dumps(error) + "\n").encode())
            state["gets"] += 1
            value = "1" if state["gets"] == 1 else "2"
            return httpx.Response(200, json=_configmap({"a": value}, str(state["gets"])))

        notified = asyncio.Event()

        class FakeNotifier:
            async def notify_async(self):
                notified.set()

            async def close(self):
                pass

        source = K8sConfigMapSource(
            "app",
            client=_k8s_client(handler),
            backoff=BackoffPolicy(initial_delay=0.01, max_delay=0.01),
        )

        await source.watch(FakeNotifier())
        await asyncio.wait_for(notified.wait(), timeout=5)
        await source.stop()

        assert state["gets"] >= 2


class TestBuildSource:
    """SourceSpec → 소스 생성 테스트"""

    def test_build_each_kind(self):
        assert isinstance(build_source(SourceSpec(SourceKind.FILE, "a.yaml")), FileSource)
        assert isinstance(build_source(SourceSpec(SourceKind.ENVIRONMENT)), EnvironmentSource)

        configmap = build_source(SourceSpec(SourceKind.K8S_CONFIGMAP, "app"), namespace="ns")
        assert isinstance(configmap, K8sConfigMapSource)
        assert configmap.namespace == "ns"

        secret = build_source(SourceSpec(SourceKind.K8S_SECRET, "creds"))
        assert isinstance(secret, K8sSecretSource)


class QuietClient:
    """이벤트 없이 바로 끝나는 watch 스트림만 돌려주는 클라이언트"""

    def __init__(self):
        self.watches = 0

    async def get_object(self, kind, name, namespace=None):
        return _configmap({"a": "1"})

    async def watch(self, kind, name, namespace=None, resource_version=None):
        self.watches += 1
        return
        yield


class TestK8sQuietWatch:
    """조용한 ConfigMap 장시간 감시 테스트"""

    @pytest.mark.asyncio
    async def test_many_empty_streams_keep_watching(self):
        """빈 스트림이 수천 번 반복되어도 감시가 유지되고 대기 시간은 상한 이내"""
        real_sleep = asyncio.sleep
        delays = []
        parked = asyncio.Event()

        async def fake_sleep(delay):
            delays.append(delay)
            if len(delays) >= 3000:
                parked.set()
                await real_sleep(3600)

        class FakeNotifier:
            closed = False

            async def notify_async(self):
                pass

            async def close(self):
                self.closed = True

        notifier = FakeNotifier()
        client = QuietClient()
        source = K8sConfigMapSource("app", client=client)

        with patch("sources.k8s.asyncio.sleep", fake_sleep):
            await source.watch(notifier)
            await asyncio.wait_for(parked.wait(), timeout=10)
            assert not source._task.done()
            await source.stop()

        assert client.watches >= 3000
        assert max(delays) <= source.backoff.max_delay * (1 + source.backoff.jitter)
        assert notifier.closed
