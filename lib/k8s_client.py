"""
Kubernetes API 클라이언트 (비동기)

ConfigMap / Secret 조회와 watch 이벤트 스트리밍만 지원하는 최소 클라이언트입니다.

인증 정보 탐색 순서:
1. 클러스터 내부 (KUBERNETES_SERVICE_HOST + 서비스 어카운트 토큰)
2. kubeconfig (KUBECONFIG 또는 ~/.kube/config 의 current-context)
"""

import base64
import json
import logging
import os
import ssl
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import httpx
import yaml

from .errors import K8sApiError

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")
DEFAULT_KUBECONFIG = Path("~/.kube/config")
DEFAULT_NAMESPACE = "default"

# 클라이언트 설정 중 발생하는 오류 (인증서 파일, base64, kubeconfig 구조)
CONFIG_ERRORS = (OSError, ValueError, AttributeError, TypeError, KeyError)

CONFIGMAPS = "configmaps"
SECRETS = "secrets"


class K8sClient:
    """비동기 Kubernetes API 클라이언트

    httpx.AsyncClient는 캐싱하지 않고 요청마다 새로 생성합니다.
    (서비스 어카운트 토큰 갱신 반영)
    """

    def __init__(
        self,
        server: str,
        token: str | None = None,
        token_file: Path | None = None,
        verify: ssl.SSLContext | bool = True,
        namespace: str = DEFAULT_NAMESPACE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            server: API 서버 URL
            token: Bearer 토큰
            token_file: 토큰 파일 (요청마다 다시 읽음, token보다 우선)
            verify: TLS 검증 설정
            namespace: 기본 네임스페이스
            timeout: 요청 타임아웃 (초)
            transport: httpx 트랜스포트 (테스트용)
        """
        self.server = server.rstrip("/")
        self.token = token
        self.token_file = token_file
        self.verify = verify
        self.namespace = namespace
        self.timeout = timeout
        self.transport = transport

    # ========================================================================
    # 생성
    # ========================================================================

    @classmethod
    def in_cluster(cls) -> "K8sClient":
        """클러스터 내부 서비스 어카운트로 생성

        Raises:
            K8sApiError: 클러스터 내부 환경이 아니거나 CA/네임스페이스 파일 읽기 실패
        """
        host = os.getenv("KUBERNETES_SERVICE_HOST")
        port = os.getenv("KUBERNETES_SERVICE_PORT", "443")
        token_file = SERVICE_ACCOUNT_DIR / "token"
        if not host or not token_file.exists():
            raise K8sApiError("클러스터 내부 환경이 아닙니다")

        try:
            return cls._from_service_account(host, port, token_file)
        except CONFIG_ERRORS as e:
            raise K8sApiError(f"서비스 어카운트 설정 실패: {e}") from e

    @classmethod
    def _from_service_account(cls, host: str, port: str, token_file: Path) -> "K8sClient":
        if ":" in host:
            host = f"[{host}]"

        ca_file = SERVICE_ACCOUNT_DIR / "ca.crt"
        verify: ssl.SSLContext | bool = True
        if ca_file.exists():
            verify = ssl.create_default_context(cafile=str(ca_file))

        namespace_file = SERVICE_ACCOUNT_DIR / "namespace"
        namespace = DEFAULT_NAMESPACE
        if namespace_file.exists():
            namespace = namespace_file.read_text().strip() or DEFAULT_NAMESPACE

        return cls(
            server=f"https://{host}:{port}",
            token_file=token_file,
            verify=verify,
            namespace=namespace,
        )

    @classmethod
    def from_kubeconfig(cls, path: str | Path | None = None) -> "K8sClient":
        """kubeconfig의 current-context로 생성

        Raises:
            K8sApiError: kubeconfig 읽기 실패 또는 컨텍스트 누락
        """
        if path is None:
            path = os.getenv("KUBECONFIG", "").split(os.pathsep)[0] or DEFAULT_KUBECONFIG
        path = Path(path).expanduser()

        try:
            with open(path, encoding="utf-8") as f:
                kubeconfig = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise K8sApiError(f"kubeconfig 읽기 실패 ({path}): {e}") from e

        try:
            return cls._from_kubeconfig_data(kubeconfig)
        except CONFIG_ERRORS as e:
            raise K8sApiError(f"잘못된 kubeconfig ({path}): {e}") from e

    @classmethod
    def _from_kubeconfig_data(cls, kubeconfig: dict[str, Any]) -> "K8sClient":
        """파싱된 kubeconfig에서 current-context 설정 추출

        Raises:
            K8sApiError: 컨텍스트/클러스터/사용자 또는 server 누락
        """
        if not isinstance(kubeconfig, dict):
            raise K8sApiError(f"kubeconfig 최상위 값이 매핑이 아닙니다: {type(kubeconfig).__name__}")

        def find(section: str, name: str | None) -> dict[str, Any]:
            for entry in kubeconfig.get(section) or []:
                if entry.get("name") == name:
                    return entry.get(section[:-1]) or {}
            raise K8sApiError(f"kubeconfig에 {section[:-1]} '{name}' 없음")

        context = find("contexts", kubeconfig.get("current-context"))
        cluster = find("clusters", context.get("cluster"))
        user = find("users", context.get("user")) if context.get("user") else {}

        server = cluster.get("server")
        if not server:
            raise K8sApiError("kubeconfig 클러스터에 server 없음")

        verify: ssl.SSLContext | bool = True
        if cluster.get("insecure-skip-tls-verify"):
            verify = False
        elif cluster.get("certificate-authority-data"):
            verify = ssl.create_default_context(
                cadata=base64.b64decode(cluster["certificate-authority-data"]).decode()
            )
        elif cluster.get("certificate-authority"):
            verify = ssl.create_default_context(cafile=cluster["certificate-authority"])

        if user.get("client-certificate") and user.get("client-key"):
            if not isinstance(verify, ssl.SSLContext):
                verify = ssl.create_default_context()
                if cluster.get("insecure-skip-tls-verify"):
                    verify.check_hostname = False
                    verify.verify_mode = ssl.CERT_NONE
            verify.load_cert_chain(user["client-certificate"], user["client-key"])

        token_file = user.get("tokenFile")
        return cls(
            server=server,
            token=user.get("token"),
            token_file=Path(token_file) if token_file else None,
            verify=verify,
            namespace=context.get("namespace") or DEFAULT_NAMESPACE,
        )

    @classmethod
    def from_env(cls, kubeconfig: str | None = None) -> "K8sClient":
        """클러스터 내부 → kubeconfig 순서로 탐색

        Raises:
            K8sApiError: 사용 가능한 인증 정보 없음
        """
        if os.getenv("KUBERNETES_SERVICE_HOST") and not kubeconfig:
            try:
                return cls.in_cluster()
            except K8sApiError as e:
                logger.debug(f"[K8sClient] 클러스터 내부 설정 실패, kubeconfig 시도: {e}")
        return cls.from_kubeconfig(kubeconfig)

    # ========================================================================
    # 요청
    # ========================================================================

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.token
        if self.token_file is not None:
            try:
                token = self.token_file.read_text().strip()
            except OSError as e:
                raise K8sApiError(f"토큰 파일 읽기 실패 ({self.token_file}): {e}") from e
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _create_client(self, stream: bool = False) -> httpx.AsyncClient:
        """새로운 HTTP 클라이언트 생성 (매 요청마다)

        Args:
            stream: True면 읽기 타임아웃 없음 (watch 스트림)
        """
        timeout = httpx.Timeout(self.timeout)
        if stream:
            timeout = httpx.Timeout(self.timeout, read=None)

        return httpx.AsyncClient(
            base_url=self.server,
            headers=self._headers(),
            timeout=timeout,
            verify=self.verify,
            transport=self.transport,
        )

    def collection_path(self, kind: str, namespace: str | None = None) -> str:
        return f"/api/v1/namespaces/{namespace or self.namespace}/{kind}"

    async def get_object(
        self, kind: str, name: str, namespace: str | None = None
    ) -> dict[str, Any]:
        """단일 오브젝트 조회

        Args:
            kind: 리소스 종류 (configmaps, secrets)
            name: 오브젝트 이름
            namespace: 네임스페이스 (None이면 기본)

        Returns:
            dict: 오브젝트 JSON

        Raises:
            K8sApiError: 조회 실패 (404 포함)
        """
        path = f"{self.collection_path(kind, namespace)}/{name}"
        try:
            async with self._create_client() as client:
                response = await client.get(path)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 404:
                raise K8sApiError(f"오브젝트를 찾을 수 없습니다: {kind}/{name}", 404) from e
            logger.error(f"[K8sClient] 조회 실패: {path} ({status}) {e.response.text}")
            raise K8sApiError(f"{kind}/{name} 조회 실패: {status}", status) from e
        except httpx.HTTPError as e:
            logger.error(f"[K8sClient] 연결 실패: {e}")
            raise K8sApiError(f"Kubernetes API 연결 실패: {e}") from e
        except ValueError as e:
            raise K8sApiError(f"잘못된 응답 JSON: {e}") from e

    async def watch(
        self,
        kind: str,
        name: str,
        namespace: str | None = None,
        resource_version: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """이름으로 필터링한 watch 이벤트 스트림

        Yields:
            dict: {"type": ADDED|MODIFIED|DELETED|ERROR, "object": {...}}

        Raises:
            K8sApiError: 연결 실패, HTTP 오류, 잘못된 이벤트
        """
        params = {
            "watch": "true",
            "fieldSelector": f"metadata.name={name}",
            "allowWatchBookmarks": "false",
        }
        if resource_version:
            params["resourceVersion"] = resource_version

        path = self.collection_path(kind, namespace)
        try:
            async with self._create_client(stream=True) as client:
                async with client.stream("GET", path, params=params) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise K8sApiError(
                            f"{kind} watch 실패: {response.status_code}",
                            response.status_code,
                        )
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            yield json.loads(line)
                        except ValueError as e:
                            raise K8sApiError(f"잘못된 watch 이벤트: {e}") from e
        except httpx.HTTPError as e:
            raise K8sApiError(f"Kubernetes watch 연결 실패: {e}") from e
