"""
데이터 소스 모듈

파일, 환경변수, Kubernetes ConfigMap/Secret 레이어와
이를 병합/감시하는 SourceRegistry를 제공합니다.
"""

from lib.types import SourceKind, SourceSpec

from .base import ConfigurationSource
from .environment import EnvironmentSource
from .file import FileSource
from .k8s import K8sConfigMapSource, K8sObjectSource, K8sSecretSource
from .registry import Notifier, SourceRegistry, WatchChannel


def build_source(
    spec: SourceSpec,
    namespace: str | None = None,
    kubeconfig: str | None = None,
) -> ConfigurationSource:
    """SourceSpec으로 데이터 소스 생성"""
    if spec.kind == SourceKind.FILE:
        return FileSource(spec.arg)
    if spec.kind == SourceKind.ENVIRONMENT:
        return EnvironmentSource(spec.arg)
    if spec.kind == SourceKind.K8S_CONFIGMAP:
        return K8sConfigMapSource(spec.arg, namespace, kubeconfig=kubeconfig)
    if spec.kind == SourceKind.K8S_SECRET:
        return K8sSecretSource(spec.arg, namespace, kubeconfig=kubeconfig)
    raise TypeError(f"알 수 없는 데이터 소스 종류: {spec.kind!r}")


__all__ = [
    "ConfigurationSource",
    "EnvironmentSource",
    "FileSource",
    "K8sConfigMapSource",
    "K8sObjectSource",
    "K8sSecretSource",
    "Notifier",
    "SourceRegistry",
    "WatchChannel",
    "build_source",
]
