from __future__ import annotations

import asyncio

import pytest

from helpers import HOST, PATH, FakeChannel, settle
from ndt.download import DownloadState, DownloadTest, framing_overhead
from ndt.errors import ProtocolViolation, TransportError
from ndt.metrics import rate_kbps
from ndt.packet import MessageType
from ndt.subtest import Verdict


@pytest.mark.parametrize(
    "length, overhead",
    [(0, 2), (125, 2), (126, 4), (65535, 4), (65536, 10)],
)
def test_framing_overhead(length, overhead):
    assert framing_overhead(length) == overhead


def test_full_download(harness):
    data = FakeChannel([b"a" * 100, b"b" * 200])
    harness.connector.data[3002] = data

    async def go():
        t = DownloadTest(harness.ctx)
        assert await t.handle(MessageType.TEST_PREPARE, "3002") is Verdict.CONTINUE
        assert harness.connector.calls == [(HOST, 3002, PATH, "s2c")]
        await settle()
        assert t.metrics.bytes_transferred == (2 + 100) + (4 + 200)

        await t.handle(MessageType.TEST_START, "")
        await t.handle(MessageType.TEST_MSG, "")
        await t.handle(MessageType.TEST_MSG, "CurMSS: 1448\nMinRTT: 12\nMaxRTT: 40")
        assert await t.handle(MessageType.TEST_FINALIZE, "") is Verdict.DONE
        await t.close()
        return t

    t = asyncio.run(go())
    expected = rate_kbps(306, 1.0)
    assert t.state is DownloadState.DONE
    assert t.rate == pytest.approx(expected)
    assert harness.tokens == ["preparing_s2c", "running_s2c", "finished_s2c"]
    sent = harness.control.sent_frames()
    assert [f.kind for f in sent] == [MessageType.TEST_MSG]
    assert float(sent[0].msg) == pytest.approx(expected)
    result = t.result()
    assert result.s2c_rate == t.rate
    assert result.variables == {"MinRTT": "12"}
    assert data.closed
    assert harness.failures == []


def test_end_taken_at_first_test_msg_while_data_still_flowing(harness):
    harness.connector.data[3002] = FakeChannel([b"z" * 10], hold=True)

    async def go():
        t = DownloadTest(harness.ctx)
        await t.handle(MessageType.TEST_PREPARE, "3002")
        await settle()
        assert t.metrics.end_ts is None
        await t.handle(MessageType.TEST_START, "")
        await t.handle(MessageType.TEST_MSG, "")
        await t.close()
        return t

    t = asyncio.run(go())
    assert t.metrics.start_ts == 1.0
    assert t.metrics.end_ts == 2.0
    assert t.rate == pytest.approx(rate_kbps(12, 1.0))


def test_tracked_variables_are_configurable(harness):
    harness.connector.data[3002] = FakeChannel()

    async def go():
        t = DownloadTest(harness.ctx, tracked_variables=("MinRTT", "CurMSS"))
        await t.handle(MessageType.TEST_PREPARE, "3002")
        await settle()
        await t.handle(MessageType.TEST_START, "")
        await t.handle(MessageType.TEST_MSG, "")
        await t.handle(MessageType.TEST_MSG, "CurMSS: 1448\n")
        await t.handle(MessageType.TEST_MSG, "MinRTT: 7\n")
        await t.close()
        return t

    t = asyncio.run(go())
    assert t.variables == {"CurMSS": "1448", "MinRTT": "7"}


def test_out_of_order_message(harness):
    async def go():
        await DownloadTest(harness.ctx).handle(MessageType.TEST_START, "")

    with pytest.raises(ProtocolViolation, match="TEST_START"):
        asyncio.run(go())


def test_bad_port(harness):
    async def go():
        await DownloadTest(harness.ctx).handle(MessageType.TEST_PREPARE, "not-a-port")

    with pytest.raises(ProtocolViolation):
        asyncio.run(go())


def test_data_connection_error_is_reported(harness):
    harness.connector.data[3002] = FakeChannel([b"x", TransportError("connection reset")])

    async def go():
        t = DownloadTest(harness.ctx)
        await t.handle(MessageType.TEST_PREPARE, "3002")
        await settle()
        await t.close()

    asyncio.run(go())
    assert len(harness.failures) == 1
    assert isinstance(harness.failures[0], TransportError)


def test_empty_value_does_not_take_next_line(harness):
    harness.connector.data[3002] = FakeChannel()

    async def go():
        t = DownloadTest(harness.ctx, tracked_variables=("MinRTT", "CurRTO"))
        await t.handle(MessageType.TEST_PREPARE, "3002")
        await settle()
        await t.handle(MessageType.TEST_START, "")
        await t.handle(MessageType.TEST_MSG, "")
        await t.handle(MessageType.TEST_MSG, "MinRTT: \nCurRTO: 200")
        await t.close()
        return t

    t = asyncio.run(go())
    assert t.variables == {"MinRTT": "", "CurRTO": "200"}


def test_close_releases_channel_when_cancelled(harness):
    data = FakeChannel(hold=True)
    harness.connector.data[3002] = data

    async def go():
        t = DownloadTest(harness.ctx)
        await t.handle(MessageType.TEST_PREPARE, "3002")
        await settle()
        closing = asyncio.ensure_future(t.close())
        await asyncio.sleep(0)
        closing.cancel()
        await asyncio.gather(closing, return_exceptions=True)
        return t

    t = asyncio.run(go())
    assert data.closed
    assert t.channel is None
