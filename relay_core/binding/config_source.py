"""频道 -> 模型配置的实时数据源。

- watch(channel_key): 返回一个 ReadOnlyCell，值为当前 ModelConfig，
  尚未配置时为 None；上游配置变化时推送新值。
- InMemoryChannelConfigSource: 由代码直接 put/remove，测试与嵌入式使用。
- YamlChannelConfigSource: 从 YAML 文件加载，支持 reload() 与按 mtime 轮询。

YAML 文件格式::

    channels:
      c1:
        name: gemini-pro
        temperature: 0.4
      c2:
        model: gemini-pro-vision
"""

import asyncio
from pathlib import Path
from typing import Dict, Optional, Protocol

import yaml

from relay_core.config.settings import settings
from relay_core.domain.exceptions import ValidationError
from relay_core.domain.models import ModelConfig
from relay_core.infrastructure.logging.logger import logger
from relay_core.reactive import ReadOnlyCell, ValueCell


class ChannelConfigSource(Protocol):
    def watch(self, channel_key: str) -> ReadOnlyCell[Optional[ModelConfig]]:
        ...


class InMemoryChannelConfigSource:
    def __init__(self, configs: Optional[Dict[str, ModelConfig]] = None):
        self._cells: Dict[str, ValueCell[Optional[ModelConfig]]] = {}
        for key, cfg in (configs or {}).items():
            self.put(key, cfg)

    def watch(self, channel_key: str) -> ReadOnlyCell[Optional[ModelConfig]]:
        return self._cell(channel_key)

    def put(self, channel_key: str, config: ModelConfig) -> None:
        self._cell(channel_key).set(config)

    def remove(self, channel_key: str) -> None:
        self._cell(channel_key).set(None)

    def _cell(self, channel_key: str) -> ValueCell[Optional[ModelConfig]]:
        cell = self._cells.get(channel_key)
        if cell is None:
            cell = ValueCell(None)
            self._cells[channel_key] = cell
        return cell


class YamlChannelConfigSource(InMemoryChannelConfigSource):
    def __init__(self, path: str | Path | None = None, default_provider: Optional[str] = None):
        super().__init__()
        self.path = Path(path or settings.channel_config_file).expanduser()
        self._default_provider = default_provider or settings.default_provider
        self._mtime: Optional[float] = None
        self.reload()

    def reload(self) -> None:
        """重新读取文件，把变化推送给订阅者；文件中消失的频道置为 None。"""

        configs = self._read()
        for key, cfg in configs.items():
            self.put(key, cfg)
        for key in list(self._cells):
            if key not in configs:
                self.remove(key)

    async def poll(self, interval: float = 2.0) -> None:
        """按 mtime 轮询文件变化，直到被取消。"""

        while True:
            await asyncio.sleep(interval)
            mtime = self._current_mtime()
            if mtime == self._mtime:
                continue
            try:
                self.reload()
            except ValidationError as exc:
                # 保留上一次有效的配置
                logger.warning(
                    "Channel config reload failed",
                    extra={"extra": {"path": str(self.path), "error": exc.message}},
                )

    def _read(self) -> Dict[str, ModelConfig]:
        self._mtime = self._current_mtime()
        if self._mtime is None:
            return {}
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ValidationError(code="CHANNEL_CONFIG_INVALID", message=f"Failed to read {self.path}: {exc}")
        channels = data.get("channels") if isinstance(data, dict) else None
        if channels is None:
            return {}
        if not isinstance(channels, dict):
            raise ValidationError(code="CHANNEL_CONFIG_INVALID", message=f"{self.path}: 'channels' must be a mapping")
        configs: Dict[str, ModelConfig] = {}
        for key, raw in channels.items():
            try:
                if isinstance(raw, str):
                    raw = {"name": raw}
                configs[str(key)] = ModelConfig.from_mapping(raw, self._default_provider)
            except (ValueError, TypeError, AttributeError) as exc:
                logger.warning(
                    "Skipped invalid channel config",
                    extra={"extra": {"path": str(self.path), "channel_key": key, "error": str(exc)}},
                )
        return configs

    def _current_mtime(self) -> Optional[float]:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None
