import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import appdirs
import yaml
from dotenv import load_dotenv

logger = logging.getLogger("config_manager")

# 环境变量中的数据库设置，键为连接设置字段名
DB_ENV_KEYS = {
    "driver": "GRIDKIT_DB_DRIVER",
    "host": "GRIDKIT_DB_HOST",
    "port": "GRIDKIT_DB_PORT",
    "schema": "GRIDKIT_DB_SCHEMA",
    "username": "GRIDKIT_DB_USERNAME",
    "password": "GRIDKIT_DB_PASSWORD",
    "path": "GRIDKIT_DB_PATH",
    "charset": "GRIDKIT_DB_CHARSET",
}

DEFAULT_GRID_SETTINGS = {
    "records_per_page": 25,
    "page_size_options": [25, 50, 100, 250],
    "include_all_option": True,
}


class ConfigManager:
    """统一的配置管理器 - 单例模式

    配置来源（优先级从高到低）：
    1. 用户配置目录下的 config.json
    2. 环境变量（支持 .env 文件）
    3. 内置默认值
    """

    _instance = None
    _lock = Lock()

    APP_NAME = "gridkit"
    APP_AUTHOR = "gridkit"

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(ConfigManager, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        env_path = Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
            logger.info(f"从 {env_path} 加载环境变量")
        else:
            load_dotenv()
            logger.debug("尝试从默认位置加载.env文件")

        self.config_dir = os.environ.get(
            "GRIDKIT_CONFIG_DIR",
            appdirs.user_config_dir(self.APP_NAME, self.APP_AUTHOR),
        )
        self.config_file = os.path.join(self.config_dir, "config.json")

        self._config_cache: Optional[Dict[str, Any]] = None
        self._config_loaded = False

        self._initialized = True

    def load_config(self) -> Dict[str, Any]:
        """加载配置文件，支持缓存和环境变量回退"""
        if self._config_loaded and self._config_cache is not None:
            logger.debug("从缓存加载配置。")
            return self._config_cache

        config_data: Dict[str, Any] = {}
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config_data = json.load(f)
                logger.info(f"已加载配置文件: {self.config_file}")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(
                    f"读取配置文件 {self.config_file} 失败: {e}，使用环境变量或默认值"
                )
        else:
            logger.debug(f"配置文件 {self.config_file} 未找到，将尝试环境变量。")

        databases = dict(config_data.get("databases", {}))
        if "default" not in databases:
            env_settings = self._database_settings_from_env()
            if env_settings:
                logger.info("从环境变量加载默认数据库连接设置。")
                databases["default"] = env_settings
            else:
                logger.warning("配置文件和环境变量均未设置默认数据库连接。")

        grid_settings = {**DEFAULT_GRID_SETTINGS, **config_data.get("grid", {})}

        final_config = {
            "databases": databases,
            "grid": grid_settings,
            "logging": config_data.get("logging", {}),
        }

        self._config_cache = final_config
        self._config_loaded = True
        logger.debug("配置已加载并缓存。")
        return self._config_cache

    def reload_config(self) -> Dict[str, Any]:
        """清空缓存并重新加载配置"""
        logger.info("开始重新加载配置...")
        self._config_cache = None
        self._config_loaded = False
        return self.load_config()

    @staticmethod
    def _database_settings_from_env() -> Dict[str, Any]:
        """从 DATABASE_URL 或 GRIDKIT_DB_* 环境变量组装连接设置"""
        url = os.environ.get("DATABASE_URL")
        if url:
            return {"url": url}

        settings = {}
        for key, env_name in DB_ENV_KEYS.items():
            value = os.environ.get(env_name)
            if value is not None and value != "":
                settings[key] = value
        if "port" in settings:
            try:
                settings["port"] = int(settings["port"])
            except ValueError:
                logger.warning(f"忽略无效的端口设置: {settings['port']}")
                settings.pop("port")
        return settings

    def get_database_settings(self, name: str = "default") -> Optional[Dict[str, Any]]:
        """获取命名数据库连接的设置，不存在时返回 None"""
        settings = self.load_config()["databases"].get(name)
        return dict(settings) if settings else None

    def get_grid_defaults(self, key: Optional[str] = None, default: Any = None) -> Any:
        """获取表格默认设置

        Args:
            key: 配置键名，为 None 时返回全部表格设置
            default: 键不存在时的默认值
        """
        grid_config = self.load_config()["grid"]
        if key is None:
            return dict(grid_config)
        return grid_config.get(key, default)


def load_grid_definition(path: str) -> Dict[str, Any]:
    """从 YAML 文件读取声明式表格定义

    文件顶层必须是映射，结构与 GridConfig.from_dict() 接受的字典一致。

    Raises:
        ValueError: 文件内容不是映射时
    """
    with open(path, "r", encoding="utf-8") as f:
        definition = yaml.safe_load(f)

    if not isinstance(definition, dict):
        raise ValueError(f"表格定义文件 {path} 的顶层必须是映射")

    logger.debug(f"已读取表格定义: {path}")
    return definition


_config_manager = ConfigManager()


def load_config() -> Dict[str, Any]:
    """加载配置"""
    return _config_manager.load_config()


def reload_config() -> Dict[str, Any]:
    """重新加载配置"""
    return _config_manager.reload_config()


def get_database_settings(name: str = "default") -> Optional[Dict[str, Any]]:
    """获取命名数据库连接设置"""
    return _config_manager.get_database_settings(name)


def get_grid_defaults(key: Optional[str] = None, default: Any = None) -> Any:
    """获取表格默认设置"""
    return _config_manager.get_grid_defaults(key, default)
