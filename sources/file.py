"""
파일 데이터 소스 (JSON / TOML / YAML)

확장자로 형식을 결정하며 watchdog으로 파일 변경을 감시합니다.
"""

import asyncio
import json
import logging
import os
import tomllib
from pathlib import Path
from typing import Any

import yaml
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from lib.errors import SourceError

from .base import ConfigurationSource
from .registry import Notifier

logger = logging.getLogger(__name__)

WATCHED_EVENTS = ("created", "modified", "deleted", "moved")


PARSERS = {
    "json": json.loads,
    "toml": tomllib.loads,
    "yaml": yaml.safe_load,
    "yml": yaml.safe_load,
}


class _PathEventHandler(FileSystemEventHandler):
    """부모 디렉토리 이벤트 중 대상 파일 이벤트만 전달"""

    def __init__(self, path: Path, notifier: Notifier):
        self.path = os.path.abspath(path)
        self.notifier = notifier

    def _matches(self, event: FileSystemEvent) -> bool:
        if event.is_directory or event.event_type not in WATCHED_EVENTS:
            return False
        paths = [event.src_path]
        if event.event_type == "moved":
            paths = [event.dest_path]
        return any(os.path.abspath(os.fsdecode(p)) == self.path for p in paths)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if self._matches(event):
            logger.debug(f"[FileSource] 파일 변경 감지: {event.event_type} {self.path}")
            self.notifier.notify()


class FileSource(ConfigurationSource):
    """파일 레이어

    파일이 없으면 빈 레이어를 반환합니다 (watch 모드에서 나중에 생성될 수 있음).
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._observer = None
        self._notifier: Notifier | None = None

    @property
    def format(self) -> str:
        """확장자 기반 형식 (소문자)

        Raises:
            SourceError: 지원하지 않거나 없는 확장자 (치명적)
        """
        extension = self.path.suffix.lower().lstrip(".")
        if not extension:
            raise SourceError.fatal(f"파일 형식을 알 수 없습니다: {self.path}")
        if extension not in PARSERS:
            raise SourceError.fatal(f"지원하지 않는 파일 확장자: {extension}")
        return extension

    async def load(self) -> dict[str, Any]:
        parser = PARSERS[self.format]

        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"[FileSource] 파일 없음, 빈 레이어 사용: {self.path}")
            return {}
        except (OSError, UnicodeDecodeError) as e:
            raise SourceError.fatal(f"파일 읽기 실패 ({self.path}): {e}") from e

        try:
            data = parser(text)
        except (ValueError, yaml.YAMLError) as e:
            raise SourceError.fatal(f"파일 파싱 실패 ({self.path}): {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise SourceError.fatal(
                f"최상위 값이 매핑이 아닙니다 ({self.path}): {type(data).__name__}"
            )
        return data

    async def watch(self, notifier: Notifier) -> None:
        """부모 디렉토리를 감시하여 대상 파일 이벤트만 알림"""
        directory = self.path.absolute().parent
        if not directory.is_dir():
            logger.error(f"[FileSource] 감시할 디렉토리 없음: {directory}")
            await notifier.close()
            return

        self._notifier = notifier
        self._observer = Observer()
        self._observer.schedule(
            _PathEventHandler(self.path, notifier), str(directory), recursive=False
        )
        self._observer.start()
        logger.info(f"[FileSource] 파일 감시 시작: {self.path}")

    async def stop(self) -> None:
        """파일 감시 중지"""
        if self._observer:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._observer = None
        if self._notifier:
            await self._notifier.close()
            self._notifier = None

    def __repr__(self) -> str:
        return f"FileSource({str(self.path)!r})"
