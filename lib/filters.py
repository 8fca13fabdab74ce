"""
템플릿 커스텀 필터

- base64encode / hexencode: 문자열, bytes, 바이트 시퀀스 인코딩
- from_json / from_yaml / from_toml: 문자열을 구조화된 값으로 역직렬화
"""

import base64
import json
import tomllib
from collections.abc import Sequence
from typing import Any

import yaml
from jinja2 import Environment, TemplateRuntimeError


def register(env: Environment) -> None:
    """Jinja2 Environment에 필터 등록"""
    env.filters["base64encode"] = base64encode
    env.filters["hexencode"] = hexencode
    env.filters["from_json"] = from_json
    env.filters["from_yaml"] = from_yaml
    env.filters["from_toml"] = from_toml


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")

    if isinstance(value, (bytes, bytearray)):
        return bytes(value)

    if isinstance(value, Sequence):
        if not all(isinstance(item, int) and not isinstance(item, bool) for item in value):
            raise TemplateRuntimeError("잘못된 시퀀스 (숫자가 아님)")
        try:
            return bytes(value)
        except ValueError as e:
            raise TemplateRuntimeError("잘못된 시퀀스 (u8 범위 초과)") from e

    raise TemplateRuntimeError(f"인코딩할 수 없는 입력: {type(value).__name__}")


def base64encode(value: Any) -> str:
    return base64.b64encode(_as_bytes(value)).decode("ascii")


def hexencode(value: Any) -> str:
    return _as_bytes(value).hex()


def _require_str(value: Any, filter_name: str) -> str:
    if not isinstance(value, str):
        raise TemplateRuntimeError(f"{filter_name}은 문자열 입력이 필요합니다")
    return value


def from_json(value: Any) -> Any:
    text = _require_str(value, "from_json")
    try:
        return json.loads(text)
    except ValueError as e:
        raise TemplateRuntimeError(f"역직렬화 실패: {e}") from e


def from_yaml(value: Any) -> Any:
    text = _require_str(value, "from_yaml")
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise TemplateRuntimeError(f"역직렬화 실패: {e}") from e


def from_toml(value: Any) -> Any:
    text = _require_str(value, "from_toml")
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise TemplateRuntimeError(f"역직렬화 실패: {e}") from e
