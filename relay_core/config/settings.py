"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MULTIMODAL_PROMPT = "Look at the image(s), and then answer the following question: {text}"


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("RELAY_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class RelaySettings(BaseSettings):
    """中继服务配置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="gemini",
        description="频道配置未指定 provider 时使用的名称，例如 gemini、echo",
    )
    default_model: str = Field(
        default="gemini-pro",
        description="逻辑模型名，由 registry 映射为具体厂商模型",
    )

    # Gemini
    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API 基础URL",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="JSONL 频道存储根目录")
    channel_config_file: str = Field(default="channels.yaml", description="频道 -> 模型配置文件")
    log_dir: str = Field(default="logs", description="日志目录，为空则不写文件")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 中继行为 ----
    attachment_scale: float = Field(default=0.5, gt=0.0, le=1.0, description="图片附件缩放比例")
    attachment_jpeg_quality: int = Field(default=80, ge=1, le=95, description="图片重新编码的 JPEG 质量")
    marker_flag_key: str = Field(default="gemini", description="标记模型生成消息的 extra_data 键名")
    multimodal_prompt_template: str = Field(
        default=DEFAULT_MULTIMODAL_PROMPT,
        description="带图片消息的提示词模板，{text} 为用户原始问题",
    )
    pending_clear_mode: Literal["all", "key"] = Field(
        default="all",
        description="请求失败时清空全部 pending 标记（all）或只移除失败的那一条（key）",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("gemini_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("multimodal_prompt_template")
    @classmethod
    def validate_prompt_template(cls, v: str) -> str:
        if "{text}" not in v:
            raise ValueError("multimodal_prompt_template must contain {text}")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = RelaySettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = RelaySettings
