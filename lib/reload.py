"""
리로드 컨트롤러

템플릿 대상이 변경되면 의존 프로세스에 알립니다.

액션 종류:
- NoAction: 아무것도 하지 않음
- ShellCommand: /bin/sh -c 로 명령 실행 (이전 자식 프로세스는 SIGINT 후 회수)
- Executable: 실행 파일 직접 실행 (ShellCommand와 동일한 수명 관리)
- SignalAction: PID / 프로세스 이름 / 부모 프로세스에 시그널 전송

실행되는 프로세스에는 CONTEMPLATED_FILES 환경변수로 변경된 경로 목록이
쉼표로 연결되어 전달됩니다.
"""

import asyncio
import logging
import os
import signal
from collections.abc import Iterable
from dataclasses import dataclass, field

import psutil

from .errors import ReloadError

logger = logging.getLogger(__name__)

CONTEMPLATED_FILES_ENV = "CONTEMPLATED_FILES"
PARENT_TARGET = ":parent"


# ============================================================================
# 시그널 대상
# ============================================================================


@dataclass(frozen=True)
class PidTarget:
    pid: int


@dataclass(frozen=True)
class ProcessNameTarget:
    name: str


@dataclass(frozen=True)
class ParentTarget:
    pass


SignalTarget = PidTarget | ProcessNameTarget | ParentTarget


def parse_signal_target(text: str) -> SignalTarget:
    """시그널 대상 파싱

    ':parent' → 부모 프로세스, 정수 → PID, 그 외 → 프로세스 이름
    """
    if text == PARENT_TARGET:
        return ParentTarget()
    try:
        return PidTarget(int(text))
    except ValueError:
        return ProcessNameTarget(text)


def parse_signal(text: str) -> signal.Signals:
    """시그널 파싱 (번호, 'HUP', 'SIGHUP' 모두 허용, 대소문자 무시)

    Raises:
        ValueError: 알 수 없는 시그널
    """
    text = text.strip()
    try:
        return signal.Signals(int(text))
    except ValueError:
        pass

    name = text.upper()
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    try:
        return signal.Signals[name]
    except KeyError:
        raise ValueError(f"알 수 없는 시그널: {text}") from None


# ============================================================================
# 리로드 액션
# ============================================================================


@dataclass(frozen=True)
class NoAction:
    pass


@dataclass(frozen=True)
class ShellCommand:
    command: str


@dataclass(frozen=True)
class Executable:
    path: str


@dataclass(frozen=True)
class SignalAction:
    signal: signal.Signals
    target: SignalTarget = field(default_factory=ParentTarget)


ReloadAction = NoAction | ShellCommand | Executable | SignalAction


def describe_action(action: ReloadAction) -> str:
    """로그용 액션 설명"""
    if isinstance(action, NoAction):
        return "없음"
    if isinstance(action, ShellCommand):
        return f"셸 명령 '{action.command}'"
    if isinstance(action, Executable):
        return f"실행 파일 '{action.path}'"
    if isinstance(action, SignalAction):
        return f"시그널 {action.signal.name} → {action.target}"
    raise TypeError(f"알 수 없는 리로드 액션: {action!r}")


class ReloadController:
    """리로드 액션 실행기

    ShellCommand / Executable 액션은 마지막으로 실행한 자식 프로세스를
    하나만 추적합니다.
    """

    def __init__(self, action: ReloadAction | None = None):
        """
        Args:
            action: 리로드 액션 (기본: NoAction)
        """
        self.action: ReloadAction = action if action is not None else NoAction()
        self.child: asyncio.subprocess.Process | None = None
        self._reapers: set[asyncio.Task] = set()

    async def execute(self, changed_paths: Iterable[str]) -> None:
        """변경된 경로 목록으로 리로드 액션 실행

        Args:
            changed_paths: 변경된 대상 경로

        Raises:
            ReloadError: 프로세스 실행 또는 시그널 전송 실패
        """
        paths = ",".join(str(path) for path in changed_paths)
        action = self.action

        if isinstance(action, NoAction):
            return

        if isinstance(action, (ShellCommand, Executable)):
            await self._interrupt_child()
            self.child = await self._spawn(action, paths)
            return

        if isinstance(action, SignalAction):
            self._send_signal(action.signal, action.target)
            return

        raise TypeError(f"알 수 없는 리로드 액션: {action!r}")

    async def _spawn(
        self, action: ShellCommand | Executable, paths: str
    ) -> asyncio.subprocess.Process:
        env = {**os.environ, CONTEMPLATED_FILES_ENV: paths}
        try:
            if isinstance(action, ShellCommand):
                process = await asyncio.create_subprocess_shell(action.command, env=env)
            else:
                process = await asyncio.create_subprocess_exec(action.path, env=env)
        except OSError as e:
            raise ReloadError(f"리로드 프로세스 실행 실패: {e}") from e

        logger.info(
            f"[Reload] {describe_action(action)} 실행: PID={process.pid}, "
            f"{CONTEMPLATED_FILES_ENV}={paths}"
        )
        return process

    async def _interrupt_child(self) -> None:
        """이전 자식 프로세스가 실행 중이면 SIGINT 전송 후 백그라운드에서 회수"""
        child, self.child = self.child, None
        if child is None or child.returncode is not None:
            return

        try:
            child.send_signal(signal.SIGINT)
        except ProcessLookupError:
            # 이미 종료됨
            pass
        except OSError as e:
            raise ReloadError(f"이전 프로세스 중단 실패 (PID={child.pid}): {e}") from e

        logger.debug(f"[Reload] 이전 프로세스 중단: PID={child.pid}")
        reaper = asyncio.create_task(child.wait())
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)

    def _send_signal(self, sig: signal.Signals, target: SignalTarget) -> None:
        for pid in self._resolve_pids(target):
            try:
                os.kill(pid, sig)
            except OSError as e:
                raise ReloadError(f"시그널 {sig.name} 전송 실패 (PID={pid}): {e}") from e
            logger.info(f"[Reload] 시그널 {sig.name} 전송: PID={pid}")

    @staticmethod
    def _resolve_pids(target: SignalTarget) -> list[int]:
        if isinstance(target, PidTarget):
            return [target.pid]

        if isinstance(target, ParentTarget):
            return [os.getppid()]

        if isinstance(target, ProcessNameTarget):
            pids = [
                process.pid
                for process in psutil.process_iter(["name"])
                if process.info["name"] == target.name
            ]
            if not pids:
                logger.warning(f"[Reload] 이름이 일치하는 프로세스 없음: {target.name}")
            return pids

        raise TypeError(f"알 수 없는 시그널 대상: {target!r}")
