"""
contemplate 실행 모듈

명령행 인터페이스, 환경변수 설정, 1회 실행/watch 모드 실행기.
"""

from .config import WorkerConfig
from .main import Contemplate, exec_program, fork_and_exec_in_parent

__all__ = [
    "WorkerConfig",
    "Contemplate",
    "exec_program",
    "fork_and_exec_in_parent",
]
