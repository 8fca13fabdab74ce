"""
WorkerConfig 테스트
"""

import logging
from pathlib import Path

import pytest

from lib.errors import ConfigurationError
from lib.types import SourceKind, SourceSpec
from worker.config import WorkerConfig


class TestWorkerConfig:
    """환경변수 설정 테스트"""

    def test_from_env(self, clean_env):
        clean_env.setenv("CONTEMPLATE_DATASOURCES", "file:a.yaml,k8s-secret:creds")
        clean_env.setenv("CONTEMPLATE_K8S_NAMESPACE", "prod")
        clean_env.setenv("CONTEMPLATE_LOG", "debug")

        config = WorkerConfig.from_env()

        assert config.k8s_namespace == "prod"
        assert config.log_level == "debug"
        assert config.source_specs() == [
            SourceSpec(SourceKind.FILE, "a.yaml"),
            SourceSpec(SourceKind.K8S_SECRET, "creds"),
        ]

    def test_from_env_defaults(self, clean_env):
        config = WorkerConfig.from_env()

        assert config.source_specs() == []
        assert config.k8s_namespace is None
        assert config.kubeconfig is None

    def test_resolve_log_level(self):
        assert WorkerConfig().resolve_log_level(logging.INFO) == logging.INFO
        assert WorkerConfig(log_level="warning").resolve_log_level(logging.INFO) == logging.WARNING
        assert WorkerConfig(log_level="nonsense").resolve_log_level(logging.INFO) == logging.INFO

    def test_validate_ok(self, worker_config):
        assert worker_config.validate() == []

    def test_validate_bad_datasources(self):
        config = WorkerConfig(datasources="file:")

        with pytest.raises(ConfigurationError):
            config.validate(strict=True)

    def test_validate_bad_log_level_non_strict(self):
        config = WorkerConfig(log_level="loud")

        messages = config.validate(strict=False)

        assert len(messages) == 1
        assert "CONTEMPLATE_LOG" in messages[0]

    def test_missing_kubeconfig_is_warning(self, tmp_path: Path, caplog):
        config = WorkerConfig(kubeconfig=str(tmp_path / "missing"))

        with caplog.at_level(logging.WARNING):
            messages = config.validate(strict=True)

        assert len(messages) == 1
        assert "kubeconfig" in caplog.text
