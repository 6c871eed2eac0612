"""Tests for notification sinks and local delivery."""

import asyncio
import io
from pathlib import Path
from unittest.mock import MagicMock, patch

import orjson
import pytest

from fieldsales_tracker.models import LocalNotification
from fieldsales_tracker.notifications import (
    FileSink,
    LocalNotifier,
    PresentationOptions,
    StdoutSink,
)


def _notification(trigger=None) -> LocalNotification:
    return LocalNotification(
        title="Comment added by omar",
        body="Called back, wants a quote",
        data={"timestamp": "2025-03-01T10:00:00.000Z", "userId": "64f0", "leadId": "65aa"},
        trigger=trigger,
    )


class TestStdoutSink:
    """Tests for :class:`StdoutSink`."""

    def test_writes_bytes(self) -> None:
        sink = StdoutSink()
        data = b'{"id":"n-1"}\n'

        mock_stdout = MagicMock()
        with patch("fieldsales_tracker.notifications.sys") as mock_sys:
            mock_sys.stdout = mock_stdout
            sink.write(data)
        mock_stdout.buffer.write.assert_called_once_with(data)
        mock_stdout.buffer.flush.assert_called_once()

    def test_broken_pipe_propagates(self) -> None:
        mock_stdout = MagicMock()
        mock_stdout.buffer.write.side_effect = BrokenPipeError
        with patch("fieldsales_tracker.notifications.sys") as mock_sys:
            mock_sys.stdout = mock_stdout
            with pytest.raises(BrokenPipeError):
                StdoutSink().write(b"x\n")

    def test_writes_to_given_stream(self) -> None:
        out = io.BytesIO()
        sink = StdoutSink(out)
        sink.write(b'{"id":"n-1"}\n')
        sink.write(b'{"id":"n-2"}\n')
        sink.close()
        assert out.getvalue().splitlines() == [b'{"id":"n-1"}', b'{"id":"n-2"}']
        assert out.closed is False


class TestFileSink:
    """Tests for :class:`FileSink`."""

    def test_appends_records_and_creates_dirs(self, tmp_path: Path) -> None:
        path = tmp_path / "spool" / "notifications.ndjson"
        sink = FileSink(path)
        try:
            sink.write(b'{"n":1}\n')
            sink.write(b'{"n":2}\n')
        finally:
            sink.close()

        assert path.read_bytes().splitlines() == [b'{"n":1}', b'{"n":2}']

    def test_reopen_appends(self, tmp_path: Path) -> None:
        path = tmp_path / "notifications.ndjson"
        for n in (1, 2):
            sink = FileSink(path)
            sink.write(orjson.dumps({"n": n}, option=orjson.OPT_APPEND_NEWLINE))
            sink.close()
        assert len(path.read_bytes().splitlines()) == 2

    def test_close_is_idempotent(self, tmp_path: Path) -> None:
        sink = FileSink(tmp_path / "n.ndjson")
        sink.close()
        sink.close()


class TestLocalNotifier:
    """Tests for :class:`LocalNotifier`."""

    @pytest.mark.asyncio
    async def test_immediate_delivery(self, memory_sink) -> None:
        notifier = LocalNotifier(memory_sink, PresentationOptions(set_badge=True))
        notification_id = await notifier.schedule(_notification())

        assert notifier.delivered == 1
        record = memory_sink.records[0]
        assert record["id"] == notification_id
        assert record["delivered_at"].endswith("Z")
        assert record["content"]["title"] == "Comment added by omar"
        assert record["content"]["data"]["leadId"] == "65aa"
        assert record["presentation"] == {"show_alert": True, "play_sound": True, "set_badge": True}

    @pytest.mark.asyncio
    async def test_suppressed_without_permission(self, memory_sink) -> None:
        notifier = LocalNotifier(memory_sink)
        notifier.permission_granted = False

        assert await notifier.schedule(_notification()) is None
        assert memory_sink.records == []
        assert notifier.delivered == 0

    @pytest.mark.asyncio
    async def test_delayed_trigger(self, memory_sink) -> None:
        notifier = LocalNotifier(memory_sink)
        await notifier.schedule(_notification(trigger=0.02))
        assert memory_sink.records == []

        await asyncio.sleep(0.1)
        assert len(memory_sink.records) == 1

    @pytest.mark.asyncio
    async def test_cancel_all_drops_pending(self, memory_sink) -> None:
        notifier = LocalNotifier(memory_sink)
        await notifier.schedule(_notification(trigger=0.02))
        notifier.cancel_all()

        await asyncio.sleep(0.1)
        assert memory_sink.records == []

    @pytest.mark.asyncio
    async def test_close_closes_sink(self, memory_sink) -> None:
        notifier = LocalNotifier(memory_sink)
        await notifier.schedule(_notification(trigger=10))
        notifier.close()
        assert memory_sink.closed is True
