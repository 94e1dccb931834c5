import asyncio
import json
import os
import shutil
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List
from uuid import uuid4

from relay_core.config.settings import settings
from relay_core.domain.exceptions import BusinessError, PublishError
from relay_core.domain.models import MessageAck, OutboundMessage
from relay_core.reactive import ReadOnlyCell, ValueCell


class JsonChannelTransport:
    """把频道消息追加写入 JSONL 文件的聊天通道。

    目录结构：{root}/channels/{cid}/meta.json + messages.jsonl，
    cid 中的 ":" 在目录名里替换为 "__"。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._channel_root = self._root / "channels"
        self._channel_root.mkdir(parents=True, exist_ok=True)
        self._has_messages: Dict[str, ValueCell[bool]] = {}

    async def send_message(self, message: OutboundMessage) -> MessageAck:
        await asyncio.to_thread(self._append, message)
        self._cell(message.cid).set(True)
        return MessageAck(message_id=message.id, cid=message.cid)

    def watch_has_messages(self, cid: str) -> ReadOnlyCell[bool]:
        return self._cell(cid).read_only()

    def list_messages(self, cid: str) -> List[OutboundMessage]:
        msgs_path = self._channel_dir(cid) / "messages.jsonl"
        items: List[OutboundMessage] = []
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(self._to_message(json.loads(line)))
            except (ValueError, KeyError):
                continue
        return items

    def list_channels(self) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        for cdir in sorted(self._channel_root.glob("*/")):
            meta_path = cdir / "meta.json"
            if meta_path.exists():
                try:
                    items.append(json.loads(meta_path.read_text(encoding="utf-8")))
                except ValueError:
                    continue
        return items

    def delete_channel(self, cid: str) -> None:
        cdir = self._channel_dir(cid)
        if not cdir.exists():
            raise BusinessError(code="CHANNEL_NOT_FOUND", message=cid)
        try:
            shutil.rmtree(cdir)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))
        cell = self._has_messages.get(cid)
        if cell is not None:
            cell.set(False)

    def _append(self, message: OutboundMessage) -> None:
        cdir = self._channel_dir(message.cid)
        try:
            cdir.mkdir(parents=True, exist_ok=True)
            payload = asdict(message)
            payload["created_at"] = _utcnow()
            with (cdir / "messages.jsonl").open("a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False) + "\n")
            meta = self._read_meta(cdir, message.cid)
            meta["updated_at"] = payload["created_at"]
            meta["message_count"] = int(meta.get("message_count", 0)) + 1
            self._write_meta(cdir, meta)
        except (OSError, TypeError, ValueError) as e:
            raise PublishError(code="STORE_WRITE_ERROR", message=str(e), cid=message.cid)

    def _read_meta(self, cdir: Path, cid: str) -> Dict[str, Any]:
        meta_path = cdir / "meta.json"
        if meta_path.exists():
            return json.loads(meta_path.read_text(encoding="utf-8"))
        now = _utcnow()
        return {"cid": cid, "created_at": now, "updated_at": now, "message_count": 0}

    def _write_meta(self, cdir: Path, meta: Dict[str, Any]) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        tmp_path.write_text(json.dumps(meta, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, meta_path)

    def _channel_dir(self, cid: str) -> Path:
        return self._channel_root / cid.replace(":", "__")

    def _cell(self, cid: str) -> ValueCell[bool]:
        cell = self._has_messages.get(cid)
        if cell is None:
            cell = ValueCell((self._channel_dir(cid) / "messages.jsonl").exists())
            self._has_messages[cid] = cell
        return cell

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> OutboundMessage:
        return OutboundMessage(
            id=data["id"],
            cid=data["cid"],
            text=data.get("text") or "",
            extra_data=data.get("extra_data") or {},
        )


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
