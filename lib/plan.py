"""
템플릿 실행 계획 (Plan)

템플릿 소스 → 렌더링 → 변경 감지 → 선택적 쓰기 과정을 담당합니다.

처리 단계 (TemplateOperation.apply):
1. 템플릿 캐시 확인 (최초 1회 컴파일)
2. 스냅샷으로 렌더링, 원본 끝 개행 복원
3. dry-run이면 변경 여부만 보고
4. 백업 (확장자 지정 + 파일 소스인 경우, 충돌 보호)
5. 내용이 달라진 경우에만 대상에 쓰기
"""

import difflib
import filecmp
import logging
import os
import shutil
import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

from rich.console import Console
from rich.text import Text

from .engine import TemplateEngine
from .errors import BackupCollisionError, ErrorClassifier

logger = logging.getLogger(__name__)

STDIO_PATH = "-"
DIFF_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"


class TemplateState(str, Enum):
    """템플릿 소스 상태"""

    UNCOMPILED = "uncompiled"
    COMPILED = "compiled"


class TemplateSource:
    """템플릿 소스 (파일 또는 표준 입력)

    UNCOMPILED → COMPILED 전이는 ensure_cached() 최초 호출 시 한 번만 일어나며
    COMPILED는 종료 상태입니다.
    """

    def __init__(self, path: Path | None = None):
        """
        Args:
            path: 템플릿 파일 경로. None이면 표준 입력.
        """
        self.path = path
        self.state = TemplateState.UNCOMPILED
        self.has_trailing_newline = False

    @classmethod
    def from_path(cls, value: str) -> "TemplateSource":
        """'-'는 표준 입력"""
        if value == STDIO_PATH:
            return cls()
        return cls(Path(value))

    @property
    def is_stdin(self) -> bool:
        return self.path is None

    @property
    def name(self) -> str:
        """엔진 캐시에 등록되는 템플릿 이름"""
        return STDIO_PATH if self.path is None else str(self.path)

    def ensure_cached(self, engine: TemplateEngine, stdin: TextIO | None = None) -> None:
        """템플릿을 읽어 엔진 캐시에 컴파일 (이미 컴파일된 경우 no-op)

        Raises:
            OSError: 파일 읽기 실패
            TemplateRenderError: 템플릿 문법 오류
        """
        if self.state == TemplateState.COMPILED:
            return

        if self.path is None:
            logger.info("[Plan] 표준 입력에서 템플릿 읽는 중")
            text = (stdin or sys.stdin).read()
        else:
            with open(self.path, encoding="utf-8", newline="") as f:
                text = f.read()

        engine.compile(self.name, text)
        self.has_trailing_newline = text.endswith("\n")
        self.state = TemplateState.COMPILED

    def render(self, engine: TemplateEngine, context: dict[str, Any]) -> str:
        """렌더링 (원본이 개행으로 끝났다면 개행 하나를 복원)"""
        rendered = engine.render(self.name, context)
        if self.has_trailing_newline:
            rendered += "\n"
        return rendered

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TemplateSource):
            return NotImplemented
        return self.path == other.path

    def __hash__(self) -> int:
        return hash(self.path)

    def __repr__(self) -> str:
        return f"TemplateSource({self.name!r}, {self.state.value})"


def _colorize(line: str) -> Text:
    style = {"+": "green", "-": "red", "@": "yellow"}.get(line[:1], "")
    return Text(line, style=style)


@dataclass(frozen=True)
class TemplateDestination:
    """템플릿 출력 대상 (파일 또는 표준 출력)"""

    path: Path | None = None  # None이면 표준 출력

    @classmethod
    def from_path(cls, value: str) -> "TemplateDestination":
        """'-'는 표준 출력"""
        if value == STDIO_PATH:
            return cls()
        return cls(Path(value))

    @property
    def is_stdout(self) -> bool:
        return self.path is None

    @property
    def supports_notify(self) -> bool:
        """watch 모드 재렌더링 지원 여부"""
        return not self.is_stdout

    @property
    def display_path(self) -> str:
        return STDIO_PATH if self.path is None else str(self.path)

    def _log_diff(self, existing: bytes, modified_at: float, templated: str) -> None:
        """unified diff를 표준 에러로 출력 (터미널이면 색상 적용)"""
        old_date = datetime.fromtimestamp(modified_at).astimezone()
        new_date = datetime.now().astimezone()
        diff = difflib.unified_diff(
            existing.decode("utf-8", errors="replace").splitlines(),
            templated.splitlines(),
            fromfile=self.display_path,
            tofile=self.display_path,
            fromfiledate=old_date.strftime(DIFF_DATE_FORMAT),
            tofiledate=new_date.strftime(DIFF_DATE_FORMAT),
            lineterm="",
        )

        console = Console(stderr=True, highlight=False, soft_wrap=True)
        for line in diff:
            console.print(_colorize(line))

    def would_change(self, templated: str, log_diff: bool = False) -> bool:
        """대상을 건드리지 않고 변경 여부만 확인 (dry-run)"""
        if self.path is None:
            return True

        try:
            existing = self.path.read_bytes()
            modified_at = self.path.stat().st_mtime
        except FileNotFoundError:
            existing, modified_at = b"", datetime.now().timestamp()

        changed = existing != templated.encode("utf-8")
        if changed and log_diff:
            self._log_diff(existing, modified_at, templated)
        return changed

    def write_templated(self, templated: str, log_diff: bool = False) -> bool:
        """내용이 달라진 경우에만 대상에 쓰기

        Args:
            templated: 렌더링 결과
            log_diff: True면 변경 diff를 표준 에러로 출력

        Returns:
            bool: 대상이 변경되었는지 여부 (표준 출력은 항상 True)

        Raises:
            OSError: 열기/읽기/쓰기 실패
        """
        if self.path is None:
            sys.stdout.write(templated)
            sys.stdout.flush()
            return True

        content = templated.encode("utf-8")
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o666)
        with os.fdopen(fd, "r+b") as f:
            existing = f.read()
            if existing == content:
                return False

            if log_diff:
                self._log_diff(existing, os.fstat(f.fileno()).st_mtime, templated)

            f.seek(0)
            f.truncate()
            f.write(content)

        logger.debug(f"[Plan] 파일 쓰기 완료: {self.path} ({len(content)} bytes)")
        return True

    def __str__(self) -> str:
        return self.display_path


@dataclass(eq=False)
class TemplateOperation:
    """템플릿 하나를 대상 하나로 렌더링하는 작업"""

    source: TemplateSource
    dest: TemplateDestination
    backup_extension: str | None = None  # 지정 시 소스 파일을 백업
    _backup_done: bool = field(default=False, init=False, repr=False)

    @classmethod
    def new_in_place(
        cls, path: str, backup_extension: str | None = None
    ) -> "TemplateOperation":
        """소스 파일 자체를 대상으로 하는 작업"""
        return cls(
            source=TemplateSource.from_path(path),
            dest=TemplateDestination.from_path(path),
            backup_extension=backup_extension or None,
        )

    @classmethod
    def stdio(cls) -> "TemplateOperation":
        """표준 입력 → 표준 출력"""
        return cls(source=TemplateSource(), dest=TemplateDestination())

    def ensure_cached(self, engine: TemplateEngine) -> None:
        self.source.ensure_cached(engine)

    def backup_path(self) -> Path | None:
        """백업 경로: 소스와 같은 디렉토리의 <파일명>.<확장자>"""
        if not self.backup_extension or self.source.path is None:
            return None
        source_path = self.source.path
        extension = self.backup_extension.lstrip(".")
        return source_path.with_name(f"{source_path.name}.{extension}")

    def _backup(self) -> None:
        """소스 파일 백업 (작업 수명 동안 한 번)

        Raises:
            BackupCollisionError: 기존 백업이 현재 소스와 다름
        """
        backup_path = self.backup_path()
        if backup_path is None or self._backup_done:
            return

        source_path = self.source.path
        if backup_path.exists() and not filecmp.cmp(
            source_path, backup_path, shallow=False
        ):
            raise BackupCollisionError(backup_path)

        logger.info(f"[Plan] 백업: {source_path} -> {backup_path}")
        shutil.copy2(source_path, backup_path)
        self._backup_done = True

    def apply(
        self,
        engine: TemplateEngine,
        context: dict[str, Any],
        dry_run: bool = False,
        log_diff: bool = False,
    ) -> bool:
        """템플릿 작업 적용

        Args:
            engine: 템플릿 엔진 (공유 캐시)
            context: 렌더링 컨텍스트 (병합된 스냅샷)
            dry_run: True면 파일을 변경하지 않고 변경 여부만 보고
            log_diff: True면 diff를 표준 에러로 출력

        Returns:
            bool: 대상이 변경되었는지 (dry-run이면 변경될 것인지)

        Raises:
            TemplateRenderError: 컴파일/렌더링 실패
            BackupCollisionError: 백업 충돌
            OSError: 읽기/쓰기 실패
        """
        self.ensure_cached(engine)
        templated = self.source.render(engine, context)

        if dry_run:
            return self.dest.would_change(templated, log_diff)

        self._backup()
        return self.dest.write_templated(templated, log_diff)

    def __repr__(self) -> str:
        return f"TemplateOperation({self.source.name} -> {self.dest})"


class Plan:
    """템플릿 작업 목록"""

    def __init__(self, operations: list[TemplateOperation] | None = None):
        self.operations: list[TemplateOperation] = list(operations or [])

    @classmethod
    def stdio(cls) -> "Plan":
        """표준 입력 → 표준 출력 단일 작업"""
        return cls([TemplateOperation.stdio()])

    def add_template(
        self, source: TemplateSource, dest: TemplateDestination
    ) -> TemplateOperation:
        operation = TemplateOperation(source, dest)
        self.operations.append(operation)
        return operation

    def __iter__(self):
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def destinations_are_unique(self) -> bool:
        """두 작업이 같은 대상을 공유하지 않는지"""
        destinations = [op.dest for op in self.operations]
        return len(destinations) == len(set(destinations))

    def notify_unsupported(self) -> list[TemplateOperation]:
        """watch 모드를 지원하지 않는 작업 목록 (표준 출력 대상)"""
        return [op for op in self.operations if not op.dest.supports_notify]

    def ensure_cached(self, engine: TemplateEngine) -> None:
        for operation in self.operations:
            operation.ensure_cached(engine)

    def execute(
        self,
        engine: TemplateEngine,
        context: dict[str, Any],
        dry_run: bool = False,
        log_diff: bool = False,
    ) -> list[TemplateOperation]:
        """모든 작업 적용 (실패한 작업은 로그 후 건너뜀)

        Returns:
            list: 변경이 발생한 작업 목록
        """
        changed = []
        for operation in self.operations:
            try:
                if operation.apply(engine, context, dry_run, log_diff):
                    changed.append(operation)
            except Exception as e:
                logger.warning(
                    f"[Plan] 템플릿 작업 실패 {operation.source.name} -> "
                    f"{operation.dest}: {ErrorClassifier.format_message(e)}"
                )
        return changed

    def try_execute(
        self,
        engine: TemplateEngine,
        context: dict[str, Any],
        dry_run: bool = False,
        log_diff: bool = False,
    ) -> list[TemplateOperation]:
        """모든 작업 적용 (첫 실패 시 예외 전파)

        Returns:
            list: 변경이 발생한 작업 목록
        """
        return [
            operation
            for operation in self.operations
            if operation.apply(engine, context, dry_run, log_diff)
        ]

    def __repr__(self) -> str:
        return f"Plan({self.operations!r})"
