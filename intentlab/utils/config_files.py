"""YAML 配置文件读取与环境变量展开。 / YAML config reading with env var expansion.

LLM 端点配置与流水线配置共用。 / Shared by LLM endpoint and pipeline config.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import yaml

logger = logging.getLogger(__name__)

_ENV_REF = re.compile(r"\$\{([^}]+)\}")


def expand_env_vars(obj: Any) -> Any:
    """递归展开字典/列表中的 ${ENV_VAR} 引用。 / Recursively expand ${ENV_VAR} refs.

    支持格式 / Supported formats:
    - ${VAR_NAME}          → os.environ["VAR_NAME"]（未设置时保留原文）
    - ${VAR_NAME:-default} → os.environ.get("VAR_NAME", "default")
    """
    if isinstance(obj, str):

        def _replace(match):
            var_expr = match.group(1)
            if ":-" in var_expr:
                var_name, default = var_expr.split(":-", 1)
                return os.environ.get(var_name.strip(), default.strip())
            return os.environ.get(var_expr.strip(), match.group(0))

        return _ENV_REF.sub(_replace, obj)

    if isinstance(obj, dict):
        return {k: expand_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [expand_env_vars(item) for item in obj]
    return obj


def read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """读取 YAML 文件并展开环境变量引用。 / Read YAML and expand env var refs."""
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"配置文件顶层必须是映射: {path}")
    return expand_env_vars(raw)


def find_and_read_yaml(
    config_file: Optional[str],
    search_paths: Iterable[str],
) -> Dict[str, Any]:
    """读取指定配置文件，未指定时按搜索路径自动发现。

    / Read the given config file, or auto-discover one along search_paths.
    指定文件不存在时只告警并返回空字典。
    """
    if config_file:
        path = Path(config_file)
        if path.exists():
            logger.info("配置文件已加载: %s", path)
            return read_yaml(path)
        logger.warning("指定的配置文件不存在: %s", path)
        return {}

    for search_path in search_paths:
        path = Path(search_path)
        if path.exists():
            logger.info("自动发现配置文件: %s", path)
            return read_yaml(path)

    logger.debug("未发现配置文件，将依赖代码配置")
    return {}
