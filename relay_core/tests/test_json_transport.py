import asyncio
import json
import tempfile
from pathlib import Path

import pytest

from relay_core.domain.exceptions import BusinessError
from relay_core.domain.models import OutboundMessage
from relay_core.transport.json_store import JsonChannelTransport


def test_send_message_appends_jsonl_and_meta():
    with tempfile.TemporaryDirectory() as d:
        transport = JsonChannelTransport(root=Path(d) / ".storage")
        cid = "messaging:abc"
        has_messages = transport.watch_has_messages(cid)
        assert has_messages.value is False

        msg = OutboundMessage.create(cid=cid, text="Hi there", marker_flag_key="gemini")
        ack = asyncio.run(transport.send_message(msg))
        asyncio.run(transport.send_message(OutboundMessage.create(cid=cid, text="Again", marker_flag_key="gemini")))

        assert ack.message_id == msg.id
        assert has_messages.value is True
        stored = transport.list_messages(cid)
        assert [m.text for m in stored] == ["Hi there", "Again"]
        assert stored[0].extra_data == {"gemini": True}

        cdir = Path(d) / ".storage" / "channels" / "messaging__abc"
        meta = json.loads((cdir / "meta.json").read_text(encoding="utf-8"))
        assert meta["cid"] == cid
        assert meta["message_count"] == 2
        assert transport.list_channels()[0]["cid"] == cid


def test_existing_channel_reports_messages():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        asyncio.run(
            JsonChannelTransport(root=root).send_message(OutboundMessage.create(cid="c1", text="x", marker_flag_key="m"))
        )
        assert JsonChannelTransport(root=root).watch_has_messages("c1").value is True


def test_delete_channel():
    with tempfile.TemporaryDirectory() as d:
        transport = JsonChannelTransport(root=Path(d) / ".storage")
        asyncio.run(transport.send_message(OutboundMessage.create(cid="c1", text="x", marker_flag_key="m")))
        transport.delete_channel("c1")
        assert transport.list_messages("c1") == []
        assert transport.watch_has_messages("c1").value is False
        with pytest.raises(BusinessError):
            transport.delete_channel("c1")
