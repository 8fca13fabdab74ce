"""
contemplate 실행기

1회 실행 후 필요 시 watch 모드로 전환합니다.
- 1회 실행: 스냅샷 조립 → 엄격한 계획 실행 (첫 오류에서 종료 코드 1)
- watch 모드: 소스 변경 → 재조립 → 최선 노력 실행 → 변경된 대상이 있으면 리로드
- -x: 1회 실행 후 후속 프로그램으로 exec
  (watch 모드에서는 fork 하여 부모가 exec, 자식이 감시 계속)
"""

import asyncio
import functools
import logging
import os
import signal
from concurrent.futures import ThreadPoolExecutor

from lib.engine import TemplateEngine
from lib.errors import ContemplateError, ErrorClassifier, ReloadError
from lib.plan import Plan
from lib.reload import NoAction, ReloadAction, ReloadController, describe_action
from sources import SourceRegistry

logger = logging.getLogger(__name__)


def exec_program(program: list[str]) -> None:
    """현재 프로세스를 후속 프로그램으로 교체 (성공 시 반환하지 않음)"""
    logger.info(f"[Contemplate] 실행: {' '.join(program)}")
    os.execvp(program[0], program)


def fork_and_exec_in_parent(program: list[str]) -> None:
    """fork 후 부모는 후속 프로그램으로 exec, 자식은 반환하여 감시 계속

    후속 프로그램이 원래 PID를 유지하므로 컨테이너 init 등에서
    contemplate가 엔트리포인트 역할을 할 수 있습니다.
    """
    pid = os.fork()
    if pid == 0:
        return

    logger.debug(f"[Contemplate] PID {pid}로 계속 실행")
    exec_program(program)


class Contemplate:
    """템플릿 계획, 데이터 소스, 리로드 컨트롤러를 묶는 실행기"""

    def __init__(
        self,
        plan: Plan,
        registry: SourceRegistry,
        action: ReloadAction | None = None,
        dry_run: bool = False,
        log_diff: bool = False,
        watch: bool = False,
        and_then_exec: list[str] | None = None,
        engine: TemplateEngine | None = None,
    ):
        """
        Args:
            plan: 템플릿 작업 목록
            registry: 데이터 소스 레지스트리
            action: 리로드 액션 (기본: NoAction)
            dry_run: 파일을 쓰지 않고 변경 여부만 보고
            log_diff: 변경 diff를 표준 에러로 출력
            watch: 1회 실행 후 watch 모드 진입
            and_then_exec: 1회 실행 후 실행할 프로그램과 인자
            engine: 템플릿 엔진 (기본: 새 엔진)
        """
        self.plan = plan
        self.registry = registry
        self.reload = ReloadController(action if action is not None else NoAction())
        self.dry_run = dry_run
        self.log_diff = log_diff
        self.watch = watch
        self.and_then_exec = and_then_exec
        self.engine = engine or TemplateEngine()
        self.reconciliations = 0
        self._lock: asyncio.Lock | None = None

    def run(self) -> int:
        """전체 실행

        Returns:
            int: 종료 코드
        """
        try:
            self.plan.ensure_cached(self.engine)
        except (ContemplateError, OSError) as e:
            logger.error(f"[Contemplate] 템플릿 캐시 실패: {ErrorClassifier.format_message(e)}")
            return 1

        try:
            asyncio.run(self.run_oneshot())
        except (ContemplateError, OSError) as e:
            logger.error(f"[Contemplate] 에러: {ErrorClassifier.format_message(e)}")
            return 1

        try:
            if self.watch:
                if self.and_then_exec:
                    fork_and_exec_in_parent(self.and_then_exec)
                asyncio.run(self.run_watch())
            elif self.and_then_exec:
                exec_program(self.and_then_exec)
        except OSError as e:
            logger.error(f"[Contemplate] 후속 프로그램 실행 실패: {e}")
            return 1
        except KeyboardInterrupt:
            logger.info("[Contemplate] KeyboardInterrupt 수신, 종료 중...")

        return 0

    async def run_oneshot(self) -> None:
        """1회 실행 (첫 오류에서 예외 전파)"""
        snapshot = await self.registry.as_snapshot()
        changed = self.plan.try_execute(self.engine, snapshot, self.dry_run, self.log_diff)
        logger.debug(f"[Contemplate] 1회 실행 완료: 변경 {len(changed)}건")

    async def run_watch(self, install_signal_handlers: bool = True) -> None:
        """watch 모드 (모든 소스 감시가 끝나거나 종료 시그널까지)"""
        loop = asyncio.get_running_loop()
        loop.set_default_executor(
            ThreadPoolExecutor(
                max_workers=os.cpu_count() or 1, thread_name_prefix="contemplate-worker"
            )
        )

        if install_signal_handlers:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(
                    sig, lambda: asyncio.create_task(self.shutdown())
                )

        logger.info(
            f"[Contemplate] 변경 감시 시작 (리로드 액션: {describe_action(self.reload.action)})"
        )
        await self.registry.watch(self.reconcile)
        logger.info("[Contemplate] 변경 감시 종료")

    async def reconcile(self, registry: SourceRegistry) -> None:
        """소스 변경 시 재조립 → 재렌더링 → 리로드

        조립 실패는 이번 주기만 중단하며 다음 변경 시 다시 시도합니다.
        """
        self.reconciliations += 1
        if self._lock is None:
            self._lock = asyncio.Lock()

        try:
            snapshot = await registry.as_snapshot()
        except ContemplateError as e:
            logger.warning(
                f"[Contemplate] 데이터 읽기 오류, 리로드하지 않음: "
                f"{ErrorClassifier.format_message(e)}"
            )
            return

        async with self._lock:
            loop = asyncio.get_running_loop()
            changed = await loop.run_in_executor(
                None,
                functools.partial(
                    self.plan.execute, self.engine, snapshot, self.dry_run, self.log_diff
                ),
            )

            # 변경된 파일이 없으면 리로드하지 않음
            if not changed:
                logger.debug("[Contemplate] 변경 없음")
                return

            paths = [operation.dest.display_path for operation in changed]
            if self.dry_run:
                logger.info(f"[Contemplate] dry-run: 리로드 생략 ({', '.join(paths)})")
                return

            try:
                await self.reload.execute(paths)
            except ReloadError as e:
                logger.warning(f"[Contemplate] 리로드 알림 실패: {e}")

    async def shutdown(self) -> None:
        """종료 시그널 처리: 모든 소스 감시 중지"""
        logger.info("[Contemplate] 종료 신호 수신, 감시 중지...")
        await self.registry.close()
