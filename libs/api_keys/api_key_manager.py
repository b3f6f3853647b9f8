import os
import random
from dataclasses import dataclass, field
from typing import List, Optional, Set

from libs.core.config_loader import load_root_dotenv


@dataclass
class APIKeyManager:
    """
    API Key 管理器（原子能力）

    能力：
    - 多 key 清单（环境变量、根目录 .env、显式传入）
    - 随机/顺序获取
    - 失败标记与自动切换
    """

    key_env_vars: List[str] = field(
        default_factory=lambda: ["GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY"]
    )
    keys: List[str] = field(default_factory=list)
    failed_keys: Set[str] = field(default_factory=set)
    read_environment: bool = True

    def __post_init__(self) -> None:
        loaded: List[str] = []
        if self.read_environment:
            loaded.extend(self._load_from_env(self.key_env_vars))
            dotenv = load_root_dotenv()
            loaded.extend(dotenv[name] for name in self.key_env_vars if dotenv.get(name))
        loaded.extend(k.strip() for k in self.keys if k and k.strip())
        # 去重（保持顺序）
        self.keys = list(dict.fromkeys(k for k in loaded if k))

    @staticmethod
    def _load_from_env(env_vars: List[str]) -> List[str]:
        out: List[str] = []
        for name in env_vars:
            v = os.getenv(name)
            if v and v.strip():
                out.append(v.strip())
        return out

    def get_key(self, random_select: bool = True) -> Optional[str]:
        available = [k for k in self.keys if k not in self.failed_keys]
        if not available:
            # 全部失败时重置，给 key 恢复的机会
            self.failed_keys.clear()
            available = list(self.keys)
        if not available:
            return None
        return random.choice(available) if random_select else available[0]

    def mark_failed(self, key: str) -> None:
        if key in self.keys:
            self.failed_keys.add(key)


_default_manager: Optional[APIKeyManager] = None


def get_default_api_key_manager() -> APIKeyManager:
    """进程内共享的 key 管理器"""
    global _default_manager
    if _default_manager is None:
        _default_manager = APIKeyManager()
    return _default_manager
