import json
import re
from pathlib import Path
from typing import Any, Dict

from .project_paths import get_project_root

_DOTENV_LINE = re.compile(
    r'^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(?:["\'](.+?)["\']|([^#\r\n]*))'
)


def load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def load_root_config() -> Dict[str, Any]:
    """
    加载项目根目录 `config.json`（不依赖工作目录）。

    注意：
    - 配置优先级应由调用方实现：环境变量 > .env > config.json
    """
    return load_json(get_project_root() / "config.json")


def parse_dotenv(content: str) -> Dict[str, str]:
    """只解析 KEY=VALUE 的简单格式，忽略注释与空行"""
    values: Dict[str, str] = {}
    for line in content.splitlines():
        match = _DOTENV_LINE.match(line)
        if not match:
            continue
        val = match.group(2) if match.group(2) is not None else match.group(3)
        if val is not None and val.strip():
            values[match.group(1)] = val.strip()
    return values


def load_root_dotenv() -> Dict[str, str]:
    env_path = get_project_root() / ".env"
    if not env_path.exists():
        return {}
    return parse_dotenv(env_path.read_text(encoding="utf-8", errors="ignore"))
