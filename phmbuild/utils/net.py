"""网络工具 — URL 校验与 HTTP 读取"""

from __future__ import annotations

import http.client
import json
import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from phmbuild.core.exceptions import FetchError, ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))

USER_AGENT = "phmbuild"
DEFAULT_TIMEOUT = 30


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def _open(url: str, headers: dict[str, str] | None, timeout: int):  # type: ignore[no-untyped-def]
    validate_url_scheme(url)
    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT, **(headers or {})})
    try:
        return urllib.request.urlopen(req, timeout=timeout)  # noqa: S310
    except urllib.error.HTTPError as e:
        raise FetchError(f"请求失败 (HTTP {e.code}): {url}") from e
    except (urllib.error.URLError, TimeoutError, OSError, http.client.HTTPException) as e:
        raise FetchError(f"请求失败: {url}: {e}") from e


def fetch_text(
    url: str, *, headers: dict[str, str] | None = None, timeout: int = DEFAULT_TIMEOUT,
) -> str:
    """GET 并按 UTF-8 解码返回正文

    Raises:
        FetchError: 连接失败、HTTP 错误或读取正文中断
    """
    resp = _open(url, headers, timeout)
    try:
        with resp:
            data = resp.read()
    except (OSError, http.client.HTTPException) as e:
        raise FetchError(f"读取响应失败: {url}: {e}") from e
    return data.decode("utf-8", errors="replace")


def fetch_json(
    url: str, *, headers: dict[str, str] | None = None, timeout: int = DEFAULT_TIMEOUT,
) -> Any:
    """GET 并解析 JSON 正文

    Raises:
        FetchError: 网络错误或响应不是合法 JSON
    """
    text = fetch_text(url, headers=headers, timeout=timeout)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise FetchError(f"响应不是合法 JSON: {url}: {e}") from e


def download_file(
    url: str, dest: Path, *, headers: dict[str, str] | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> Path:
    """下载文件到 dest，中断时删除不完整的文件"""
    dest.parent.mkdir(parents=True, exist_ok=True)
    logger.info("下载: %s -> %s", url, dest)
    resp = _open(url, headers, timeout)
    try:
        with resp, open(dest, "wb") as f:
            shutil.copyfileobj(resp, f)
    except (OSError, http.client.HTTPException) as e:
        dest.unlink(missing_ok=True)
        raise FetchError(f"下载中断: {url}: {e}") from e
    return dest
