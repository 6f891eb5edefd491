"""
配置加载模块

从 config.yaml 加载配置，支持 Pydantic 验证和环境变量覆盖。
"""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """数据库配置"""
    path: str = "data/craftwatch.db"
    timeout: int = 30


class APIConfig(BaseModel):
    """API 服务配置"""
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    admin_token: str = "CHANGE_ME_IN_PRODUCTION"


class RegistryConfig(BaseModel):
    """探测目标注册表配置"""
    seed_default_server: bool = True
    default_name: str = "Local test server"
    default_address: str = "localhost"
    default_port: int = Field(25565, ge=1, le=65535)


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None


class AppConfig(BaseSettings):
    """应用配置（完整配置）"""
    model_config = SettingsConfigDict(
        env_prefix="CRAFTWATCH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件

    优先级：
    1. 参数指定的路径
    2. 环境变量 CRAFTWATCH_CONFIG_PATH
    3. 默认路径 config.yaml

    配置文件中的相对路径以配置文件所在目录为基准。
    """
    if config_path is None:
        config_path = os.environ.get("CRAFTWATCH_CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)

    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
            if raw_config:
                base_dir = config_file.resolve().parent

                def _resolve_path(value: Optional[str]) -> Optional[str]:
                    if not value:
                        return value
                    path = Path(value)
                    if path.is_absolute():
                        return str(path)
                    return str((base_dir / path).resolve())

                raw_config.setdefault("database", {})
                if raw_config["database"].get("path"):
                    raw_config["database"]["path"] = _resolve_path(raw_config["database"]["path"])

                raw_config.setdefault("logging", {})
                raw_config["logging"]["file"] = _resolve_path(raw_config["logging"].get("file"))

                return AppConfig(**raw_config)

    # 配置文件不存在时使用默认配置（仍可被环境变量覆盖）
    return AppConfig()


# 全局配置实例（延迟加载）
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """获取全局配置实例（单例模式）"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    """重置配置（主要用于测试）"""
    global _config
    _config = None
