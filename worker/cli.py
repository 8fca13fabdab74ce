"""
명령행 인터페이스

인자 파싱, 검증, 로깅 설정 후 Contemplate를 실행합니다.

사용 예:
    contemplate -f config.yaml -e APP -t nginx.conf.tmpl /etc/nginx/nginx.conf -w -r 'nginx -s reload'
    contemplate -i=bak --cm app-config settings.ini
    contemplate -e -t app.tmpl app.conf -x /usr/bin/app --serve ';'
"""

import argparse
import logging
import sys
from collections.abc import Sequence

from lib.errors import ConfigurationError
from lib.plan import Plan, TemplateDestination, TemplateOperation, TemplateSource
from lib.reload import (
    Executable,
    NoAction,
    ParentTarget,
    ReloadAction,
    ShellCommand,
    SignalAction,
    parse_signal,
    parse_signal_target,
)
from lib.types import SourceKind, SourceSpec
from sources import SourceRegistry, build_source

from .config import WorkerConfig
from .main import Contemplate

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
AND_THEN_EXEC_FLAGS = ("-x", "--and-then-exec")
AND_THEN_EXEC_TERMINATOR = ";"
NOISY_LOGGERS = ("httpx", "httpcore", "watchdog")


class _SourceAction(argparse.Action):
    """데이터 소스 플래그를 종류와 관계없이 입력 순서대로 누적"""

    def __init__(self, option_strings, dest, kind: SourceKind, **kwargs):
        self.kind = kind
        super().__init__(option_strings, dest, **kwargs)

    def __call__(self, parser, namespace, values, option_string=None):
        sources = list(getattr(namespace, self.dest, None) or [])
        sources.append(SourceSpec(self.kind, values or None))
        setattr(namespace, self.dest, sources)


def build_parser() -> argparse.ArgumentParser:
    """argparse 파서 생성"""
    parser = argparse.ArgumentParser(
        prog="contemplate",
        description="The friendly cloud-native config templating tool",
        epilog=(
            "-x/--and-then-exec PROGRAM [ARGS...] [;]  "
            "Execute the given executable instead of exiting. "
            "Arguments up to ';' are passed verbatim."
        ),
    )

    parser.add_argument(
        "templates",
        nargs="*",
        metavar="TEMPLATE",
        help="Input files to template ('-' for standard input)",
    )
    parser.add_argument(
        "-o",
        "--output",
        nargs="?",
        const="-",
        metavar="PATH",
        help="Set the output file. Defaults to '-' (standard output)",
    )
    parser.add_argument(
        "-t",
        "--template",
        nargs="+",
        action="append",
        dest="template_pairs",
        metavar=("INPUT", "OUTPUT"),
        help="Template INPUT to OUTPUT (default: standard output, or INPUT with -i)",
    )
    parser.add_argument(
        "-i",
        "--in-place",
        nargs="?",
        const="",
        metavar="SUFFIX",
        help="Edit files in place. With =SUFFIX, back up each input first",
    )

    datasources = parser.add_argument_group("data sources")
    datasources.add_argument(
        "-f",
        "--file",
        action=_SourceAction,
        kind=SourceKind.FILE,
        dest="sources",
        metavar="PATH",
        help="Add a JSON, YAML or TOML file as a data source",
    )
    datasources.add_argument(
        "-e",
        "--environment",
        "--env",
        action=_SourceAction,
        kind=SourceKind.ENVIRONMENT,
        dest="sources",
        nargs="?",
        const="",
        metavar="PREFIX",
        help="Take values from environment variables (optionally only PREFIX_*)",
    )
    datasources.add_argument(
        "--k8s-configmap",
        "--cm",
        action=_SourceAction,
        kind=SourceKind.K8S_CONFIGMAP,
        dest="sources",
        metavar="NAME",
        help="Add a kubernetes configmap as a data source",
    )
    datasources.add_argument(
        "--k8s-secret",
        action=_SourceAction,
        kind=SourceKind.K8S_SECRET,
        dest="sources",
        metavar="NAME",
        help="Add a kubernetes secret as a data source",
    )
    datasources.add_argument(
        "--k8s-namespace",
        "--ns",
        metavar="NAME",
        help="Kubernetes namespace (default: CONTEMPLATE_K8S_NAMESPACE)",
    )
    parser.set_defaults(sources=[])

    parser.add_argument("--diff", action="store_true", help="Log diffs to standard error")
    parser.add_argument(
        "-n", "--dry-run", action="store_true", help="Don't write to any files"
    )
    parser.add_argument(
        "-w",
        "--watch",
        action="store_true",
        help="Re-render templates when data sources change",
    )

    on_reload = parser.add_mutually_exclusive_group()
    on_reload.add_argument(
        "-r",
        "--on-reload-command",
        metavar="COMMAND",
        help="Execute the shell command on reload (CONTEMPLATED_FILES is set)",
    )
    on_reload.add_argument(
        "-R",
        "--on-reload-exec",
        metavar="EXECUTABLE",
        help="Execute the executable on reload without a shell",
    )
    on_reload.add_argument(
        "--on-reload-signal",
        nargs="+",
        metavar=("SIGNAL", "PID|PROCNAME"),
        help="On reload, send SIGNAL to a PID, process name, or ':parent' (default)",
    )

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase verbosity"
    )
    verbosity.add_argument(
        "-q", "--quiet", action="count", default=0, help="Suppress verbose output"
    )

    return parser


def split_and_then_exec(argv: Sequence[str]) -> tuple[list[str], list[str] | None]:
    """-x/--and-then-exec 이후 ';' 까지의 토큰 분리

    Returns:
        tuple: (나머지 인자, 실행할 프로그램과 인자 또는 None)
    """
    argv = list(argv)
    for index, token in enumerate(argv):
        if token == "--":
            break
        if token in AND_THEN_EXEC_FLAGS or token.startswith("--and-then-exec="):
            head = []
            if "=" in token:
                head = [token.split("=", 1)[1]]
            rest = argv[index + 1 :]
            if AND_THEN_EXEC_TERMINATOR in rest:
                end = rest.index(AND_THEN_EXEC_TERMINATOR)
                program, remaining = head + rest[:end], rest[end + 1 :]
            else:
                program, remaining = head + rest, []
            return argv[:index] + remaining, program
    return argv, None


def normalize_in_place(argv: Sequence[str]) -> list[str]:
    """-i 의 SUFFIX는 '=' 로만 지정 가능하도록 정규화

    -i, --in-place → --in-place=
    -i=SUFFIX → --in-place=SUFFIX
    """
    normalized = []
    for token in argv:
        if token in ("-i", "--in-place"):
            normalized.append("--in-place=")
        elif token.startswith("-i="):
            normalized.append(f"--in-place={token[3:]}")
        else:
            normalized.append(token)
    return normalized


def verbosity_level(verbose: int, quiet: int) -> int:
    """-v/-q 횟수 → logging 레벨"""
    offset = verbose - quiet
    if offset >= 1:
        return logging.DEBUG
    if offset == 0:
        return logging.INFO
    if offset == -1:
        return logging.WARNING
    if offset == -2:
        return logging.ERROR
    return logging.CRITICAL + 1


def setup_logging(level: int) -> None:
    """로깅 설정 (표준 에러)"""
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


class Cli:
    """파싱된 명령행 인자"""

    def __init__(
        self,
        args: argparse.Namespace,
        and_then_exec: list[str] | None = None,
        config: WorkerConfig | None = None,
    ):
        self.args = args
        self.and_then_exec = and_then_exec
        self.config = config or WorkerConfig()

    @classmethod
    def parse(
        cls,
        argv: Sequence[str] | None = None,
        config: WorkerConfig | None = None,
        parser: argparse.ArgumentParser | None = None,
    ) -> "Cli":
        """인자 파싱 및 인자 단위 검증 (실패 시 SystemExit(2))"""
        parser = parser or build_parser()
        argv = sys.argv[1:] if argv is None else argv
        argv, and_then_exec = split_and_then_exec(argv)
        args = parser.parse_intermixed_args(normalize_in_place(argv))

        if and_then_exec is not None and not and_then_exec:
            parser.error("-x/--and-then-exec: 실행할 프로그램이 필요합니다")

        if args.output is not None:
            if args.template_pairs:
                parser.error("-o/--output 은 -t/--template 과 함께 사용할 수 없습니다")
            if args.in_place is not None:
                parser.error("-o/--output 은 -i/--in-place 와 함께 사용할 수 없습니다")

        if args.template_pairs:
            if args.templates:
                parser.error("-t/--template 은 위치 인자 TEMPLATE 과 함께 사용할 수 없습니다")
            for pair in args.template_pairs:
                if len(pair) > 2:
                    parser.error(f"-t/--template 은 값 1~2개를 받습니다: {pair}")

        if args.on_reload_signal:
            if len(args.on_reload_signal) > 2:
                parser.error("--on-reload-signal 은 값 1~2개를 받습니다")
            try:
                parse_signal(args.on_reload_signal[0])
            except ValueError as e:
                parser.error(str(e))

        return cls(args, and_then_exec, config)

    # ========================================================================
    # 옵션
    # ========================================================================

    @property
    def watch(self) -> bool:
        return self.args.watch

    @property
    def dry_run(self) -> bool:
        return self.args.dry_run

    @property
    def diff(self) -> bool:
        return self.args.diff

    @property
    def log_level(self) -> int:
        return verbosity_level(self.args.verbose, self.args.quiet)

    @property
    def in_place(self) -> bool:
        return self.args.in_place is not None

    @property
    def backup_extension(self) -> str | None:
        return self.args.in_place or None

    @property
    def k8s_namespace(self) -> str | None:
        return self.args.k8s_namespace or self.config.k8s_namespace

    # ========================================================================
    # 조립
    # ========================================================================

    def source_specs(self) -> list[SourceSpec]:
        """CONTEMPLATE_DATASOURCES 다음에 명령행 소스 (입력 순서 유지)"""
        return self.config.source_specs() + list(self.args.sources)

    def sources(self) -> SourceRegistry:
        return SourceRegistry(
            build_source(spec, self.k8s_namespace, self.config.kubeconfig)
            for spec in self.source_specs()
        )

    def _input_output_operations(self) -> list[TemplateOperation]:
        output = self.args.output
        if not self.args.templates:
            if output is None:
                return []
            return [
                TemplateOperation(TemplateSource(), TemplateDestination.from_path(output))
            ]

        operations = []
        for template in self.args.templates:
            if self.in_place:
                operations.append(
                    TemplateOperation.new_in_place(template, self.backup_extension)
                )
            else:
                operations.append(
                    TemplateOperation(
                        TemplateSource.from_path(template),
                        TemplateDestination.from_path(output or "-"),
                    )
                )
        return operations

    def _template_operations(self) -> list[TemplateOperation]:
        operations = []
        for pair in self.args.template_pairs or []:
            if len(pair) == 2:
                operations.append(
                    TemplateOperation(
                        TemplateSource.from_path(pair[0]),
                        TemplateDestination.from_path(pair[1]),
                    )
                )
            elif self.in_place:
                operations.append(
                    TemplateOperation.new_in_place(pair[0], self.backup_extension)
                )
            else:
                operations.append(
                    TemplateOperation(TemplateSource.from_path(pair[0]), TemplateDestination())
                )
        return operations

    def plan(self) -> Plan:
        """템플릿 작업 목록 (인자가 없으면 표준 입력 → 표준 출력)"""
        operations = self._input_output_operations() + self._template_operations()
        if not operations:
            return Plan.stdio()
        return Plan(operations)

    def reload_action(self) -> ReloadAction:
        if self.args.on_reload_command is not None:
            return ShellCommand(self.args.on_reload_command)
        if self.args.on_reload_exec is not None:
            return Executable(self.args.on_reload_exec)
        if self.args.on_reload_signal:
            values = self.args.on_reload_signal
            target = parse_signal_target(values[1]) if len(values) > 1 else ParentTarget()
            return SignalAction(parse_signal(values[0]), target)
        return NoAction()

    def validate(self, plan: Plan) -> None:
        """조립된 계획 검증

        Raises:
            ConfigurationError: 대상 중복, watch 모드에서 표준 출력 사용
        """
        if not plan.destinations_are_unique():
            raise ConfigurationError("템플릿 대상이 중복됩니다!")

        unsupported = plan.notify_unsupported()
        if self.watch and unsupported:
            raise ConfigurationError(
                "watch 모드가 지정되었지만 다음 템플릿 작업은 지원하지 않습니다: "
                f"{unsupported!r}"
            )


def main(argv: Sequence[str] | None = None) -> int:
    """contemplate 엔트리포인트

    Returns:
        int: 종료 코드 (0 성공, 1 실행 오류, 2 인자 오류)
    """
    parser = build_parser()
    config = WorkerConfig.from_env()
    cli = Cli.parse(argv, config, parser)

    setup_logging(config.resolve_log_level(cli.log_level))

    try:
        config.validate(strict=True)
        registry = cli.sources()
        plan = cli.plan()
        cli.validate(plan)
        action = cli.reload_action()
    except ConfigurationError as e:
        parser.error(str(e))

    logger.debug(f"[Cli] 데이터 소스: {registry!r}")
    logger.debug(f"[Cli] 실행 계획: {plan!r}")

    app = Contemplate(
        plan,
        registry,
        action,
        dry_run=cli.dry_run,
        log_diff=cli.diff,
        watch=cli.watch,
        and_then_exec=cli.and_then_exec,
    )
    return app.run()


if __name__ == "__main__":
    sys.exit(main())
