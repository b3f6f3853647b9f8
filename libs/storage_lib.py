"""
Local Slot Storage Library.

A small durable key-value store: one JSON file per key under a base directory,
with a total size quota in the spirit of browser localStorage. Meant for
bounded state only (settings, language), never for large payloads.
"""

import errno
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

# 与浏览器 localStorage 的常见上限保持一致
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class StorageQuotaExceeded(OSError):
    """写入后总占用超过配额"""

    name = "QuotaExceededError"
    code = 22

    def __init__(self, key: str, needed: int, quota: int):
        super().__init__(
            f"Quota exceeded while writing '{key}': needs {needed} bytes, quota {quota}"
        )
        self.key = key
        self.needed = needed
        self.quota = quota


def is_quota_error(exc: BaseException) -> bool:
    """
    判断异常是否为存储配额错误。

    识别方式：专用异常类型、错误名 QuotaExceededError、数字代码 22、
    磁盘写满 (ENOSPC)，或消息中包含 "quota exceeded"。
    """
    if isinstance(exc, StorageQuotaExceeded):
        return True
    if getattr(exc, "name", None) == "QuotaExceededError":
        return True
    if getattr(exc, "code", None) == 22:
        return True
    if isinstance(exc, OSError) and exc.errno == errno.ENOSPC:
        return True
    return "quota exceeded" in str(exc).lower()


class LocalSlotStorage:
    """
    基于文件的 key-value 槽位存储。

    - 每个 key 对应 base_dir/<key>.json
    - 写入前检查总配额，超限抛出 StorageQuotaExceeded
    """

    def __init__(self, base_dir: str = "user_data/local_storage", quota_bytes: int = DEFAULT_QUOTA_BYTES):
        self.base_dir = Path(base_dir)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{_SAFE_KEY.sub('_', key)}.json"

    def _ensure_dir(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def keys(self) -> List[str]:
        if not self.base_dir.exists():
            return []
        return sorted(p.stem for p in self.base_dir.glob("*.json"))

    def used_bytes(self, exclude: Optional[str] = None) -> int:
        if not self.base_dir.exists():
            return 0
        skip = self._path(exclude) if exclude else None
        return sum(p.stat().st_size for p in self.base_dir.glob("*.json") if p != skip)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """读取槽位，不存在或内容损坏时返回 None"""
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Failed to read local slot %s: %s", key, e)
            return None

    def set(self, key: str, value: Dict[str, Any]) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        size = len(payload.encode("utf-8"))
        needed = self.used_bytes(exclude=key) + size
        if needed > self.quota_bytes:
            raise StorageQuotaExceeded(key, needed, self.quota_bytes)

        self._ensure_dir()
        path = self._path(key)
        # 先写临时文件再替换，避免写一半的槽位
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(path)

    def remove(self, key: str) -> bool:
        path = self._path(key)
        if path.exists():
            path.unlink()
            return True
        return False

    def purge(self, keys: Iterable[str]) -> List[str]:
        """删除一组 key，返回实际被删除的 key"""
        removed = []
        for key in keys:
            if self.remove(key):
                removed.append(key)
        return removed
