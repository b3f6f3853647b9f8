"""
Local persistence of client preferences.

Only `{configs, activeConfig, language}` is written to the local slot;
sessions and messages (which embed report images) live in memory and in the
remote store only.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from apps.common.models.report import AIProvider, Language, ModelConfig
from apps.session.store import AppState, SessionStore, StoreChange, StoreEvent
from libs.storage_lib import LocalSlotStorage, is_quota_error

logger = logging.getLogger(__name__)

STORAGE_KEY = "xiaobai-cloud-storage-v6"
STORAGE_VERSION = 6

# 旧版本的缓存键，包含会话大图，启动时清理
SUPERSEDED_STORAGE_KEYS = (
    "xiaobai-storage-v1",
    "xiaobai-storage-v2",
    "xiaobai-storage-v3",
    "xiaobai-storage-v4",
    "xiaobai-cloud-storage-v5",
)


def _config_to_dict(config: ModelConfig) -> Dict[str, str]:
    return {
        "provider": config.provider.value,
        "baseUrl": config.base_url,
        "modelName": config.model_name,
    }


def _config_from_dict(data: Dict[str, Any]) -> ModelConfig:
    return ModelConfig(
        provider=AIProvider(data["provider"]),
        base_url=data.get("baseUrl") or "",
        model_name=data.get("modelName") or "",
    )


def partialize(state: AppState) -> Dict[str, Any]:
    """从完整状态中挑出允许落盘的部分"""
    return {
        "configs": {p.value: _config_to_dict(c) for p, c in state.configs.items()},
        "activeConfig": _config_to_dict(state.active_config),
        "language": state.language.value,
    }


class LocalPersistence:
    """版本化的本地偏好槽位"""

    def __init__(self, storage: LocalSlotStorage, key: str = STORAGE_KEY):
        self.storage = storage
        self.key = key

    def purge_superseded(self) -> List[str]:
        removed = self.storage.purge(SUPERSEDED_STORAGE_KEYS)
        for key in removed:
            logger.info("[Storage Cleanup] removed superseded cache: %s", key)
        return removed

    def save(self, state: AppState) -> None:
        self.storage.set(self.key, {"state": partialize(state), "version": STORAGE_VERSION})

    def load(self) -> Optional[Dict[str, Any]]:
        """
        读取偏好，返回 {"configs", "active_provider", "language"}。
        槽位缺失、版本不符或内容损坏时返回 None。
        """
        record = self.storage.get(self.key)
        if not record or record.get("version") != STORAGE_VERSION:
            return None
        state = record.get("state") or {}
        try:
            configs = {
                AIProvider(p): _config_from_dict(c)
                for p, c in (state.get("configs") or {}).items()
            }
            active = state.get("activeConfig") or {}
            active_provider = AIProvider(active["provider"]) if active.get("provider") else None
            language = Language(state["language"]) if state.get("language") else None
        except (KeyError, ValueError, ValidationError) as e:
            logger.warning("Ignoring unreadable local preferences: %s", e)
            return None
        return {"configs": configs, "active_provider": active_provider, "language": language}

    def restore_into(self, store: SessionStore) -> bool:
        prefs = self.load()
        if prefs is None:
            return False
        store.hydrate(**prefs)
        return True

    def attach(self, store: SessionStore) -> Callable[[], None]:
        """配置或语言变化时重新保存"""

        def _on_change(change: StoreChange) -> None:
            if change.event not in (StoreEvent.CONFIG_CHANGED, StoreEvent.LANGUAGE_CHANGED):
                return
            try:
                self.save(change.current)
            except OSError as e:
                if not is_quota_error(e):
                    raise
                logger.error("Local preferences not saved, quota exceeded: %s", e)
                self.purge_superseded()

        return store.subscribe(_on_change)
