"""
레이어 병합 유틸리티

여러 데이터 소스의 레이어를 하나의 스냅샷으로 병합합니다.

병합 규칙:
- 양쪽 값이 모두 dict면 재귀 병합 (나중 레이어 우선, 기존 고유 키 유지)
- 그 외에는 나중 레이어 값이 통째로 대체 (리스트는 이어붙이지 않음)
"""

import json
import re
from collections.abc import Iterable, Mapping
from copy import deepcopy
from typing import Any

import yaml

_INT_PATTERN = re.compile(r"[+-]?\d+")
_FLOAT_PATTERN = re.compile(r"[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?")


def merge(base: Mapping[str, Any], incoming: Mapping[str, Any]) -> dict[str, Any]:
    """incoming 레이어를 base 위에 병합 (입력은 변경하지 않음)

    Examples:
        >>> merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3, "z": 4}})
        {'a': {'x': 1, 'y': 3, 'z': 4}}
        >>> merge({"a": [1, 2]}, {"a": [3]})
        {'a': [3]}
    """
    merged = deepcopy(dict(base))
    for key, value in incoming.items():
        existing = merged.get(key)
        if isinstance(existing, Mapping) and isinstance(value, Mapping):
            merged[key] = merge(existing, value)
        else:
            merged[key] = deepcopy(value)
    return merged


def merge_layers(layers: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """레이어 목록을 순서대로 병합 (뒤쪽 레이어 우선)"""
    snapshot: dict[str, Any] = {}
    for layer in layers:
        snapshot = merge(snapshot, layer)
    return snapshot


def nest(segments: list[str], value: Any) -> dict[str, Any]:
    """키 경로를 중첩 dict로 변환

    >>> nest(["db", "host"], "localhost")
    {'db': {'host': 'localhost'}}
    """
    nested: Any = value
    for segment in reversed(segments):
        nested = {segment: nested}
    return nested


def split_key(key: str, separator: str = "_") -> list[str]:
    """네이티브 키 → 소문자 경로 세그먼트 (빈 세그먼트 제거)"""
    return [segment for segment in key.lower().split(separator) if segment]


def parse_value(raw: str) -> Any:
    """문자열 값을 스칼라/리스트/dict로 해석

    정수, 실수, true/false, 대괄호 리스트, 중괄호 dict, 따옴표 문자열을
    인식하며 그 외는 문자열 그대로 반환합니다.
    """
    text = raw.strip()
    if not text:
        return raw

    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False

    if _INT_PATTERN.fullmatch(text):
        return int(text)
    if _FLOAT_PATTERN.fullmatch(text):
        return float(text)

    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]

    if (text[0], text[-1]) in (("[", "]"), ("{", "}")):
        # JSON 우선, YAML flow 스타일 폴백
        try:
            return json.loads(text)
        except ValueError:
            pass
        try:
            parsed = yaml.safe_load(text)
        except yaml.YAMLError:
            return raw
        if isinstance(parsed, (list, dict)):
            return parsed

    return raw
