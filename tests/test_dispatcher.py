import asyncio

import pytest

from gammamca.dispatcher import SerialManager
from gammamca.shared import Settings
from gammamca.spectrum import SpectrumData


async def drain(transport, manager, timeout=2.0):
    """Wait until the read loop has consumed every queued chunk."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while transport.chunks and manager.recording and loop.time() < deadline:
        await asyncio.sleep(0.001)


def test_record_collects_samples(make_transport):
    transport = make_transport([b"0;1;2;", b"3;4", b";5;"])
    manager = SerialManager(transport)

    async def run():
        await manager.start_record()
        await drain(transport, manager)
        await manager.stop_record()

    asyncio.run(run())

    assert manager.get_data() == [1, 2, 3, 4, 5]
    assert manager.get_data() == []
    assert not manager.recording
    assert not transport.is_open
    assert transport.baud_rate == 9600
    assert manager.get_time() > 0


def test_start_while_recording_is_noop(make_transport):
    transport = make_transport()
    manager = SerialManager(transport)

    async def run():
        await manager.start_record()
        await manager.start_record()
        await manager.stop_record()
        await manager.stop_record()

    asyncio.run(run())
    assert transport.opened == 1


def test_resume_keeps_pending_data_and_time(make_transport):
    transport = make_transport([b";1;2;"])
    manager = SerialManager(transport)

    async def run():
        await manager.start_record()
        await drain(transport, manager)
        await manager.stop_record()
        first_time = manager.get_time()

        transport.chunks.append(b"0;3;")
        await manager.start_record(resume=True)
        await drain(transport, manager)
        await manager.stop_record()
        return first_time

    first_time = asyncio.run(run())
    assert manager.get_data() == [1, 2, 3]
    assert manager.get_time() >= first_time


def test_resume_never_joins_text_across_the_pause(make_transport):
    transport = make_transport([b";1;2;3"])
    manager = SerialManager(transport)

    async def run():
        await manager.start_record()
        await drain(transport, manager)
        await manager.stop_record()
        assert manager.get_data() == [1, 2]

        transport.chunks.append(b"9;10;")
        await manager.start_record(resume=True)
        await drain(transport, manager)
        await manager.stop_record()

    asyncio.run(run())
    data = manager.get_data()
    assert 39 not in data
    assert data == [10]


def test_resume_keeps_histogram_baseline(make_transport):
    transport = make_transport([b"1;1;\r\n2;"])
    manager = SerialManager(transport, Settings(order_type="hist", adc_channels=2))

    async def run():
        await manager.start_record()
        await drain(transport, manager)
        await manager.stop_record()

        transport.chunks.append(b"7;\r\n3;4;\r\n")
        await manager.start_record(resume=True)
        await drain(transport, manager)
        await manager.stop_record()

    asyncio.run(run())
    assert manager.framer.base_hist == [3, 4]
    assert manager.get_data() == [2, 3]
    assert manager.framer.dropped == 1


def test_new_recording_flushes_pending_data(make_transport):
    transport = make_transport([b";1;2;"])
    manager = SerialManager(transport)

    async def run():
        await manager.start_record()
        await drain(transport, manager)
        await manager.stop_record()
        await manager.start_record()
        await manager.stop_record()

    asyncio.run(run())
    assert manager.get_data() == []


def test_disconnect_stops_recording(make_transport):
    transport = make_transport([b";1;2;"], fail_after=1)
    manager = SerialManager(transport)

    async def run():
        await manager.start_record()
        for _ in range(1000):
            if not manager.recording:
                break
            await asyncio.sleep(0.001)
        await manager.stop_record()

    asyncio.run(run())
    assert manager.disconnected
    assert not manager.recording
    assert not transport.is_open
    assert manager.get_data() == [1, 2]


def test_buffer_saturation_drops_new_input():
    manager = SerialManager(None, Settings(max_size=3))
    manager.only_console = False

    manager.add_raw(b";1;2;3;4;5;")
    assert len(manager.buffer_data) == 5

    manager.add_raw(b"6;7;")
    assert manager.buffer_data == [1, 2, 3, 4, 5]
    assert manager.saturated

    manager.get_data()
    manager.add_raw(b"8;9;")
    assert manager.buffer_data == [9]
    assert not manager.saturated


def test_saturation_gap_is_not_bridged():
    manager = SerialManager(None, Settings(max_size=1))
    manager.only_console = False

    manager.add_raw(b";1;2;3")
    assert manager.buffer_data == [1, 2]

    manager.add_raw(b"4;56;")
    assert manager.saturated

    manager.get_data()
    manager.add_raw(b"7;8;")
    assert 37 not in manager.buffer_data
    assert manager.buffer_data == [8]


def test_split_utf8_sequence_is_decoded_once():
    manager = SerialManager(None)
    manager.only_console = False
    data = ";1;µ;2;".encode("utf-8")
    cut = data.index(b"\xb5")

    manager.add_raw(data[:cut])
    manager.add_raw(data[cut:])

    assert manager.get_raw_data() == ";1;µ;2;"
    assert manager.get_data() == [1, 2]
    assert manager.framer.dropped == 1


def test_console_only_keeps_raw_text(make_transport):
    transport = make_transport([b"hello ", b"detector;1;2;"])
    manager = SerialManager(transport, Settings(console_memory=10))

    async def run():
        await manager.show_console()
        await drain(transport, manager)
        await manager.hide_console()

    asyncio.run(run())
    assert manager.get_raw_data() == "ector;1;2;"
    assert manager.get_data() == []
    assert not transport.is_open

    manager.flush_raw_data()
    assert manager.get_raw_data() == ""


def test_hist_mode_sums_deltas_and_restarts_clock():
    manager = SerialManager(None, Settings(order_type="hist", adc_channels=3))
    manager.only_console = False
    manager.start_time = -1.0

    manager.add_raw(b"1;1;1;\r\n")
    assert manager.start_time > 0
    manager.add_raw(b"2;3;1;\r\n4;3;2;\r\n")

    assert manager.get_data() == [3, 2, 1]


def test_refresh_moves_data_into_spectrum():
    manager = SerialManager(None, Settings(adc_channels=4))
    manager.buffer_data = [1, 1, 2]
    manager.time_done = 2.0

    spectrum = SpectrumData()
    cps = manager.refresh(spectrum)

    assert spectrum.data == [0, 2, 1, 0]
    assert spectrum.data_time == pytest.approx(2000)
    assert spectrum.data_cps[1] == pytest.approx(1.0)
    assert cps == pytest.approx(1.5)
    assert manager.cps_stats() == (pytest.approx(1.5), 0.0)


def test_refresh_hist_mode():
    manager = SerialManager(None, Settings(order_type="hist", adc_channels=2))
    manager.buffer_data = [4, 6]
    manager.time_done = 1.0

    spectrum = SpectrumData()
    assert manager.refresh(spectrum, "background") == pytest.approx(10.0)
    assert spectrum.background == [4, 6]


def test_max_time_reached():
    manager = SerialManager(None, Settings(max_rec_time_enabled=True, max_rec_time=1))
    manager.time_done = 2.0
    assert manager.max_time_reached()
    assert not manager.max_time_reached(5000)

    manager.settings.update("max_rec_time_enabled", False)
    assert not manager.max_time_reached()


def test_send_string_and_port_identity(make_transport):
    transport = make_transport()
    manager = SerialManager(transport)

    async def run():
        await manager.send_string("ignored")
        await transport.open(9600)
        await manager.send_string(" -inf \n")

    asyncio.run(run())
    assert transport.written == [b"-inf\n"]
    assert manager.is_this_port("fake")
