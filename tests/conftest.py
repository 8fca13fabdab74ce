"""
Pytest 설정 및 공통 Fixture
"""

import json
from pathlib import Path
from typing import Any

import pytest
import yaml

from lib.engine import TemplateEngine
from worker.config import WorkerConfig


@pytest.fixture
def engine() -> TemplateEngine:
    """새 템플릿 엔진"""
    return TemplateEngine()


@pytest.fixture
def yaml_file(tmp_path: Path):
    """YAML 데이터 파일 생성 헬퍼"""

    def _write(name: str, data: dict[str, Any]) -> Path:
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def json_file(tmp_path: Path):
    """JSON 데이터 파일 생성 헬퍼"""

    def _write(name: str, data: dict[str, Any]) -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def worker_config() -> WorkerConfig:
    """테스트용 WorkerConfig

    환경변수 대신 하드코딩된 값 사용.
    """
    return WorkerConfig(
        datasources="",
        k8s_namespace=None,
        log_level=None,
        kubeconfig=None,
    )


@pytest.fixture
def clean_env(monkeypatch):
    """contemplate 관련 환경변수 제거"""
    for name in (
        "CONTEMPLATE_DATASOURCES",
        "CONTEMPLATE_K8S_NAMESPACE",
        "CONTEMPLATE_LOG",
        "KUBECONFIG",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
