from pathlib import Path


def get_project_root() -> Path:
    """
    获取项目根目录（不依赖工作目录）。

    规则：
    - 从当前文件所在位置向上回溯
    - 找到同时包含 `pyproject.toml` 与 `apps/` 的目录作为根目录
    - 找不到则退化为 libs 的上一级
    """
    here = Path(__file__).resolve()
    for parent in here.parents:
        if (parent / "pyproject.toml").exists() and (parent / "apps").is_dir():
            return parent
    # 退化：.../libs/core/project_paths.py -> .../<root>
    return here.parents[2]


def resolve_under_root(path_str: str) -> Path:
    """相对路径按项目根目录解析，绝对路径原样返回"""
    path = Path(path_str)
    if path.is_absolute():
        return path
    return get_project_root() / path
