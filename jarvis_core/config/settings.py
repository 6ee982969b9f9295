"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
加载时完成取值范围的校验与钳制（clamp），核心模块不再二次校验。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_WAKE_WORDS = ["hey jarvis", "jarvis"]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("JARVIS_CONFIG_FILE")
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


class JarvisSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- AI 接口 ----
    default_provider: str = Field(default="openai", description="默认使用的 Provider 名称")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI 兼容接口的基础URL",
    )
    ai_model: str = Field(default="gpt-4o-mini", description="实际请求的模型 ID")
    max_tokens: int = Field(default=500, description="单次回答最大 token 数，钳制到 [50, 2000]")
    temperature: float = Field(default=0.7, description="生成温度，钳制到 [0, 2]")
    system_prompt: Optional[str] = Field(
        default=None,
        description="系统提示词；为空时使用 prompts/en/jarvis_system.md",
    )
    enable_streaming_response: bool = Field(default=False, description="是否使用流式接口")
    request_timeout: float = Field(default=30.0, ge=1.0, description="AI 请求超时时间（秒）")
    min_request_interval: float = Field(default=1.0, ge=0.0, description="两次请求的最小间隔（秒）")

    # ---- 会话 ----
    maintain_context: bool = Field(default=True, description="是否携带多轮历史")
    max_conversation_history: int = Field(default=20, ge=1, le=200, description="最大上下文消息数")

    # ---- 语音 ----
    voice_timeout_seconds: float = Field(default=5.0, gt=0.0, description="唤醒后等待指令的时间（秒）")
    wake_words: List[str] = Field(default_factory=lambda: list(DEFAULT_WAKE_WORDS))
    speech_language: str = Field(default="en-US")
    speech_rate: float = Field(default=1.0, description="语速，钳制到 [0.1, 3]")
    speech_pitch: float = Field(default=1.0, description="音调，钳制到 [0.1, 2]")
    speech_volume: float = Field(default=0.8, description="音量，钳制到 [0, 1]")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    enable_debug_logs: bool = Field(default=True, description="是否输出 DEBUG 级别日志")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("temperature")
    @classmethod
    def clamp_temperature(cls, v: float) -> float:
        return _clamp(v, 0.0, 2.0)

    @field_validator("max_tokens")
    @classmethod
    def clamp_max_tokens(cls, v: int) -> int:
        return int(_clamp(v, 50, 2000))

    @field_validator("speech_rate")
    @classmethod
    def clamp_speech_rate(cls, v: float) -> float:
        return _clamp(v, 0.1, 3.0)

    @field_validator("speech_pitch")
    @classmethod
    def clamp_speech_pitch(cls, v: float) -> float:
        return _clamp(v, 0.1, 2.0)

    @field_validator("speech_volume")
    @classmethod
    def clamp_speech_volume(cls, v: float) -> float:
        return _clamp(v, 0.0, 1.0)

    @field_validator("wake_words")
    @classmethod
    def default_wake_words(cls, v: List[str]) -> List[str]:
        words = [w.strip().lower() for w in v if w and w.strip()]
        return words or list(DEFAULT_WAKE_WORDS)

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

    @property
    def has_api_key(self) -> bool:
        return bool(self.openai_api_key)


settings = JarvisSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = JarvisSettings
