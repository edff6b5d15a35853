"""版本比较

全系统唯一的 "latest" 定义：版本按 '.' 切分，每个分量拆成前导整数与后缀。
前导整数按数值比较；整数相同时，预发布后缀 (dev/alpha/beta/RC) 排在裸数字之前，
连字符补丁号 (如 ImageMagick 的 7.1.1-41) 排在裸数字之后并按数值比较；
其余后缀按字典序比较。
索引去重、更新检查、依赖约束判断都使用这里的比较器。
"""

from __future__ import annotations

import re
from typing import Iterable

ComponentKey = tuple[int, int, int, str, int, str]
VersionKey = tuple[ComponentKey, ...]

_COMPONENT_RE = re.compile(r"^(\d*)(.*)$")
_PATCH_RE = re.compile(r"^-(\d+)(.*)$")
_PRE_RE = re.compile(r"^[-_]?([A-Za-z]+)(\d*)(.*)$")

# 预发布标签的先后顺序，未列出的标签排在它们之后
_PRE_ORDER = {"dev": 0, "a": 1, "alpha": 1, "b": 2, "beta": 2, "rc": 3}
_PRE_OTHER = len(set(_PRE_ORDER.values()))

_RANK_PRE = 0
_RANK_BARE = 1
_RANK_PATCH = 2


def _component_key(comp: str) -> ComponentKey:
    digits, suffix = _COMPONENT_RE.match(comp).groups()  # type: ignore[union-attr]
    num = int(digits) if digits else -1
    if not suffix:
        return (num, _RANK_BARE, 0, "", 0, "")
    m = _PATCH_RE.match(suffix)
    if m:
        return (num, _RANK_PATCH, 0, "", int(m.group(1)), m.group(2))
    m = _PRE_RE.match(suffix)
    if m:
        label = m.group(1).lower()
        return (num, _RANK_PRE, _PRE_ORDER.get(label, _PRE_OTHER), label,
                int(m.group(2) or 0), m.group(3))
    return (num, _RANK_PRE, _PRE_OTHER, suffix, 0, "")


def version_key(version: str) -> VersionKey:
    """把版本字符串转换为可排序的键

    >>> version_key("1.10.0") > version_key("1.9.9")
    True
    >>> version_key("8.5.0") > version_key("8.5.0RC1")
    True
    """
    return tuple(_component_key(comp) for comp in str(version).strip().split("."))


def compare_versions(a: str, b: str) -> int:
    """返回 -1 / 0 / 1"""
    ka, kb = version_key(a), version_key(b)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def latest(versions: Iterable[str]) -> str | None:
    """返回最大版本，空输入返回 None"""
    items = list(versions)
    if not items:
        return None
    return max(items, key=version_key)


def release_key(version: str, revision: int = 1) -> tuple[VersionKey, int]:
    """包的排序键：版本优先，相同版本时比较修订号"""
    return version_key(version), int(revision)
