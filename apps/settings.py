"""
Backend Settings.

Loads configuration for the report assistant, aggregating environment
variables, the project `.env` and the root `config.json`.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from libs.core.config_loader import load_root_config, load_root_dotenv
from libs.core.project_paths import resolve_under_root
from libs.storage_lib import DEFAULT_QUOTA_BYTES


@dataclass(frozen=True)
class BackendSettings:
    """Immutable configuration object for the backend service."""

    host: str
    port: int
    gemini_model_name: str
    gemini_image_model_name: str = ""

    # Supabase / PostgREST
    supabase_url: str = ""
    supabase_key: str = ""
    remote_timeout_seconds: float = 30.0

    # 本地缓存
    local_storage_dir: str = "user_data/local_storage"
    local_storage_quota_bytes: int = DEFAULT_QUOTA_BYTES


_DOTENV_CACHE: Dict[str, str] = {}


def _get_env_value(name: str, default: str = "") -> str:
    """
    Read from real env first, then .env, then fallback.
    """
    value = os.getenv(name)
    if value is not None and value.strip():
        return value.strip()
    if not _DOTENV_CACHE:
        _DOTENV_CACHE.update(load_root_dotenv())
    dotenv_val = _DOTENV_CACHE.get(name, "").strip()
    return dotenv_val if dotenv_val else default


def _cfg_str(root_cfg: Dict[str, Any], key: str, default: str) -> str:
    value = root_cfg.get(key)
    return str(value) if value not in (None, "") else default


def load_settings(root_cfg: Optional[Dict[str, Any]] = None) -> BackendSettings:
    """
    后端配置（单进程入口）

    配置优先级：环境变量 > .env > 根目录 config.json > 默认值
    """
    if root_cfg is None:
        root_cfg = load_root_config()

    def setting(name: str, default: str) -> str:
        return _get_env_value(name, _cfg_str(root_cfg, name, default))

    local_dir = setting("LOCAL_STORAGE_DIR", "user_data/local_storage")

    return BackendSettings(
        host=setting("BACKEND_HOST", "127.0.0.1"),
        port=int(setting("BACKEND_PORT", "8001")),
        gemini_model_name=setting("GEMINI_MODEL_NAME", "gemini-2.5-flash"),
        gemini_image_model_name=setting("GEMINI_IMAGE_MODEL_NAME", "gemini-2.5-flash-image"),
        supabase_url=setting("SUPABASE_URL", ""),
        supabase_key=setting("SUPABASE_KEY", ""),
        remote_timeout_seconds=float(setting("REMOTE_TIMEOUT_SECONDS", "30")),
        local_storage_dir=str(resolve_under_root(local_dir)),
        local_storage_quota_bytes=int(
            setting("LOCAL_STORAGE_QUOTA_BYTES", str(DEFAULT_QUOTA_BYTES))
        ),
    )
