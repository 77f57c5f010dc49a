import pytest

from gammamca.framer import StreamFramer


STREAM = "817;12;4000;7;;;33;950;1;2;3;4096;5;"


def feed_in_chunks(framer, text, size):
    samples = []
    for start in range(0, len(text), size):
        samples.extend(framer.feed_chron(text[start:start + size]))
    return samples


def test_chron_first_segment_is_discarded():
    framer = StreamFramer()
    assert framer.feed_chron("12;34;56;") == [34, 56]
    assert framer.feed_chron("78;") == [78]


@pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 64])
def test_chron_result_does_not_depend_on_chunking(size):
    whole = StreamFramer().feed_chron(STREAM)
    assert feed_in_chunks(StreamFramer(), STREAM, size) == whole
    assert whole == [12, 4000, 7, 33, 950, 1, 2, 3, 4096, 5]


def test_chron_rejects_bad_tokens():
    framer = StreamFramer(adc_channels=4096)
    samples = framer.feed_chron(";abc;-1;4097;4096; 7 ;;12abc;5;")
    assert samples == [4096, 7, 5]
    assert framer.dropped == 5
    assert framer.accepted == 3


def test_chron_rejects_overlong_token():
    framer = StreamFramer(max_length=4)
    assert framer.feed_chron(";12345;0012;") == []
    assert framer.dropped == 2


def test_chron_noise_resets_buffer():
    framer = StreamFramer(max_length=20)
    assert framer.feed_chron("x" * 25) == []
    assert framer.raw_data == ""
    assert framer.feed_chron(";5;6;") == [5, 6]


def test_chron_buffer_stays_bounded():
    framer = StreamFramer(max_length=20)
    for _ in range(100):
        framer.feed_chron("1;2;3;" + "z" * 7)
    assert len(framer.raw_data) <= framer.max_length + 1


def test_chron_custom_delimiter():
    framer = StreamFramer(eol_char="\n")
    assert framer.feed_chron("3\n4\n5\n") == [4, 5]


def row(values, eol=";"):
    return eol.join(str(v) for v in values) + eol + "\r\n"


def test_hist_first_row_becomes_baseline():
    framer = StreamFramer(adc_channels=4)
    assert framer.feed_hist(row([1, 2, 3, 4])) == []
    assert framer.baseline_established
    assert framer.base_hist == [1, 2, 3, 4]


def test_hist_rows_yield_deltas_against_previous_row():
    framer = StreamFramer(adc_channels=4)
    deltas = framer.feed_hist(row([1, 2, 3, 4]) + row([2, 4, 6, 8]) + row([2, 5, 6, 10]))
    assert deltas == [[1, 2, 3, 4], [0, 1, 0, 2]]
    assert framer.base_hist == [2, 5, 6, 10]


def test_hist_partial_row_waits_for_line_break():
    framer = StreamFramer(adc_channels=4)
    framer.feed_hist(row([0, 0, 0, 0]))
    text = row([1, 1, 1, 1])
    assert framer.feed_hist(text[:5]) == []
    assert framer.feed_hist(text[5:]) == [[1, 1, 1, 1]]


def test_hist_rejects_wrong_channel_count():
    framer = StreamFramer(adc_channels=4)
    assert framer.feed_hist(row([1, 2, 3])) == []
    assert not framer.baseline_established
    assert framer.dropped == 1


def test_hist_glitched_token_counts_as_zero():
    framer = StreamFramer(adc_channels=4)
    framer.feed_hist(row([0, 0, 0, 0]))
    assert framer.feed_hist("1;x;3;4;\r\n") == [[1, 0, 3, 4]]


def test_hist_row_without_trailing_delimiter():
    framer = StreamFramer(adc_channels=4)
    framer.feed_hist("1;2;3;4\r\n")
    assert framer.base_hist == [1, 2, 3, 4]


def test_hist_skips_blank_lines():
    framer = StreamFramer(adc_channels=2)
    assert framer.feed_hist("\r\n\r\n" + row([1, 1]) + "\r\n" + row([3, 1])) == [[2, 0]]
    assert framer.dropped == 0


def test_hist_oversized_line_is_discarded():
    framer = StreamFramer(adc_channels=2, max_hist_length=10)
    framer.feed_hist("1;" * 20)
    assert framer.raw_data == ""


def test_flush_and_clear_base_hist():
    framer = StreamFramer(adc_channels=2)
    framer.feed_hist(row([1, 1]) + "5;")
    framer.flush()
    framer.clear_base_hist()
    assert framer.raw_data == ""
    assert not framer.baseline_established


def test_decode_waits_for_split_utf8_sequence():
    framer = StreamFramer()
    data = ";1;µ;2;".encode("utf-8")
    cut = data.index(b"\xb5")

    assert framer.decode(data[:cut]) == ";1;"
    assert framer.decode(data[cut:]) == "µ;2;"


def test_flush_drops_cut_utf8_sequence():
    framer = StreamFramer()
    assert framer.decode(b";1;\xc2") == ";1;"
    framer.flush()
    assert framer.decode(b"2;") == "2;"
