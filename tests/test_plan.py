"""
템플릿 실행 계획 테스트

캐시, 개행 보존, 변경 감지 쓰기, 백업 충돌, dry-run 테스트.
"""

import io
import os
from pathlib import Path

import pytest

from lib.engine import TemplateEngine
from lib.errors import BackupCollisionError, TemplateRenderError
from lib.plan import (
    Plan,
    TemplateDestination,
    TemplateOperation,
    TemplateSource,
    TemplateState,
)


def _operation(tmp_path: Path, template: str, name: str = "app.conf") -> TemplateOperation:
    source = tmp_path / f"{name}.tmpl"
    source.write_text(template, encoding="utf-8")
    return TemplateOperation(
        TemplateSource.from_path(str(source)),
        TemplateDestination.from_path(str(tmp_path / name)),
    )


class TestTemplateSource:
    """TemplateSource 상태 전이 테스트"""

    def test_from_path_stdin(self):
        assert TemplateSource.from_path("-").is_stdin
        assert TemplateSource.from_path("-").name == "-"

    def test_ensure_cached_once(self, tmp_path: Path, engine: TemplateEngine):
        """COMPILED 이후 재호출은 파일을 다시 읽지 않음"""
        path = tmp_path / "t.tmpl"
        path.write_text("{{ x }}\n")
        source = TemplateSource(path)

        source.ensure_cached(engine)
        path.unlink()
        source.ensure_cached(engine)

        assert source.state == TemplateState.COMPILED
        assert source.has_trailing_newline

    def test_stdin_source(self, engine: TemplateEngine):
        source = TemplateSource()

        source.ensure_cached(engine, stdin=io.StringIO("{{ x }}"))

        assert source.render(engine, {"x": 1}) == "1"
        assert not source.has_trailing_newline

    def test_missing_file(self, tmp_path: Path, engine: TemplateEngine):
        source = TemplateSource(tmp_path / "missing.tmpl")

        with pytest.raises(OSError):
            source.ensure_cached(engine)
        assert source.state == TemplateState.UNCOMPILED


class TestTemplateOperation:
    """TemplateOperation.apply 테스트"""

    def test_trailing_newline_preserved(self, tmp_path: Path, engine: TemplateEngine):
        op = _operation(tmp_path, "value={{ x }}\n")

        assert op.apply(engine, {"x": 1}) is True
        assert (tmp_path / "app.conf").read_text() == "value=1\n"

    def test_trailing_newline_not_invented(self, tmp_path: Path, engine: TemplateEngine):
        op = _operation(tmp_path, "value={{ x }}")

        op.apply(engine, {"x": 1})

        assert (tmp_path / "app.conf").read_text() == "value=1"

    def test_idempotent_write(self, tmp_path: Path, engine: TemplateEngine):
        """내용이 같으면 쓰지 않고 mtime도 유지"""
        op = _operation(tmp_path, "value={{ x }}\n")
        dest = tmp_path / "app.conf"

        assert op.apply(engine, {"x": 1}) is True
        os.utime(dest, (1_000_000, 1_000_000))

        assert op.apply(engine, {"x": 1}) is False
        assert dest.stat().st_mtime == 1_000_000

    def test_changed_content_rewritten(self, tmp_path: Path, engine: TemplateEngine):
        op = _operation(tmp_path, "{{ x }}")
        dest = tmp_path / "app.conf"
        dest.write_text("a much longer previous content")

        assert op.apply(engine, {"x": "short"}) is True
        assert dest.read_text() == "short"

    def test_dry_run_does_not_write(self, tmp_path: Path, engine: TemplateEngine):
        op = _operation(tmp_path, "{{ x }}")
        dest = tmp_path / "app.conf"
        dest.write_text("old")

        assert op.apply(engine, {"x": "new"}, dry_run=True) is True
        assert op.apply(engine, {"x": "old"}, dry_run=True) is False
        assert dest.read_text() == "old"

    def test_dry_run_missing_destination(self, tmp_path: Path, engine: TemplateEngine):
        op = _operation(tmp_path, "{{ x }}")

        assert op.apply(engine, {"x": 1}, dry_run=True) is True
        assert not (tmp_path / "app.conf").exists()

    def test_stdout_always_changed(self, engine: TemplateEngine, capsys):
        op = TemplateOperation(TemplateSource(), TemplateDestination())
        op.source.ensure_cached(engine, stdin=io.StringIO("hello {{ name }}\n"))

        assert op.apply(engine, {"name": "world"}) is True
        assert op.apply(engine, {"name": "world"}) is True
        assert capsys.readouterr().out == "hello world\nhello world\n"

    def test_diff_logged_to_stderr(self, tmp_path: Path, engine: TemplateEngine, capsys):
        op = _operation(tmp_path, "line={{ x }}\n")
        (tmp_path / "app.conf").write_text("line=1\n")

        op.apply(engine, {"x": 2}, log_diff=True)

        err = capsys.readouterr().err
        assert "-line=1" in err
        assert "+line=2" in err


class TestBackup:
    """in-place 백업 테스트"""

    def test_in_place_with_backup(self, tmp_path: Path, engine: TemplateEngine):
        path = tmp_path / "app.conf"
        path.write_text("port={{ port }}\n")
        op = TemplateOperation.new_in_place(str(path), "bak")

        assert op.apply(engine, {"port": 80}) is True

        assert path.read_text() == "port=80\n"
        assert (tmp_path / "app.conf.bak").read_text() == "port={{ port }}\n"

    def test_in_place_without_backup(self, tmp_path: Path, engine: TemplateEngine):
        path = tmp_path / "app.conf"
        path.write_text("{{ x }}")
        op = TemplateOperation.new_in_place(str(path), "")

        op.apply(engine, {"x": 1})

        assert op.backup_path() is None
        assert sorted(p.name for p in tmp_path.iterdir()) == ["app.conf"]

    def test_existing_identical_backup_ok(self, tmp_path: Path, engine: TemplateEngine):
        path = tmp_path / "app.conf"
        path.write_text("{{ x }}")
        (tmp_path / "app.conf.bak").write_text("{{ x }}")
        op = TemplateOperation.new_in_place(str(path), "bak")

        assert op.apply(engine, {"x": 1}) is True

    def test_backup_collision(self, tmp_path: Path, engine: TemplateEngine):
        """기존 백업이 다르면 실패하고 두 파일 모두 건드리지 않음"""
        path = tmp_path / "app.conf"
        backup = tmp_path / "app.conf.bak"
        path.write_text("{{ x }}")
        backup.write_text("something else")
        op = TemplateOperation.new_in_place(str(path), "bak")

        with pytest.raises(BackupCollisionError):
            op.apply(engine, {"x": 1})

        assert path.read_text() == "{{ x }}"
        assert backup.read_text() == "something else"

    def test_backup_taken_once(self, tmp_path: Path, engine: TemplateEngine):
        """두 번째 적용은 렌더링된 파일로 백업을 덮어쓰지 않음"""
        path = tmp_path / "app.conf"
        path.write_text("{{ x }}")
        op = TemplateOperation.new_in_place(str(path), "bak")

        op.apply(engine, {"x": 1})
        op.apply(engine, {"x": 2})

        assert path.read_text() == "2"
        assert (tmp_path / "app.conf.bak").read_text() == "{{ x }}"

    def test_dry_run_skips_backup(self, tmp_path: Path, engine: TemplateEngine):
        path = tmp_path / "app.conf"
        path.write_text("{{ x }}")
        op = TemplateOperation.new_in_place(str(path), "bak")

        op.apply(engine, {"x": 1}, dry_run=True)

        assert not (tmp_path / "app.conf.bak").exists()


class TestPlan:
    """Plan 실행 테스트"""

    def test_destinations_unique(self):
        plan = Plan(
            [
                TemplateOperation(TemplateSource.from_path("a"), TemplateDestination.from_path("out")),
                TemplateOperation(TemplateSource.from_path("b"), TemplateDestination.from_path("out")),
            ]
        )

        assert not plan.destinations_are_unique()

    def test_stdio_plan(self):
        plan = Plan.stdio()

        assert len(plan) == 1
        assert len(plan.notify_unsupported()) == 1

    def test_execute_skips_failures(self, tmp_path: Path, engine: TemplateEngine):
        """execute는 실패한 작업을 건너뛰고 나머지를 계속 실행"""
        broken = _operation(tmp_path, "{{ x | from_json }}", name="broken.conf")
        good = _operation(tmp_path, "{{ x }}", name="good.conf")
        plan = Plan([broken, good])

        changed = plan.execute(engine, {"x": 1})

        assert changed == [good]
        assert (tmp_path / "good.conf").read_text() == "1"

    def test_try_execute_raises(self, tmp_path: Path, engine: TemplateEngine):
        broken = _operation(tmp_path, "{{ x | from_json }}", name="broken.conf")
        good = _operation(tmp_path, "{{ x }}", name="good.conf")
        plan = Plan([broken, good])

        with pytest.raises(TemplateRenderError):
            plan.try_execute(engine, {"x": 1})

        assert not (tmp_path / "good.conf").exists()

    def test_try_execute_returns_changed(self, tmp_path: Path, engine: TemplateEngine):
        first = _operation(tmp_path, "{{ x }}", name="first.conf")
        second = _operation(tmp_path, "{{ y }}", name="second.conf")
        plan = Plan([first, second])
        plan.ensure_cached(engine)

        assert plan.try_execute(engine, {"x": 1, "y": 2}) == [first, second]
        assert plan.try_execute(engine, {"x": 1, "y": 3}) == [second]
