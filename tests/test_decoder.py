"""
Tests for byte decoding and the chunk pipeline.
"""

import pytest

from genstream.streaming.decoder import ChunkDecoder, IncrementalDecoder
from genstream.streaming.events import ClassifiedEvent, EventKind


def replay(chunks) -> list:
    decoder = ChunkDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.finish())
    return events


class TestIncrementalDecoder:
    """Test multi-byte characters across chunk boundaries."""

    def test_split_multibyte_character(self):
        decoder = IncrementalDecoder()
        data = "é".encode("utf-8")
        assert decoder.decode(data[:1]) == ""
        assert decoder.has_remainder
        assert decoder.decode(data[1:]) == "é"
        assert not decoder.has_remainder

    def test_four_byte_character_one_byte_at_a_time(self):
        decoder = IncrementalDecoder()
        text = "".join(decoder.decode(bytes([b])) for b in "🚀".encode("utf-8"))
        assert text == "🚀"

    def test_incomplete_sequence_at_end_becomes_replacement(self):
        decoder = IncrementalDecoder()
        assert decoder.decode("é".encode("utf-8")[:1]) == ""
        assert decoder.finish() == "�"

    def test_invalid_bytes_do_not_raise(self):
        decoder = IncrementalDecoder()
        assert decoder.decode(b"a\xffb") == "a�b"

    def test_other_encoding(self):
        decoder = IncrementalDecoder("latin-1")
        assert decoder.decode(b"caf\xe9") == "café"


class TestChunkDecoder:
    """Test bytes in, events out."""

    def test_split_multibyte_inside_delta(self):
        data = 'data: {"d":"é"}\n'.encode("utf-8")
        split = data.index("é".encode("utf-8")) + 1

        decoder = ChunkDecoder()
        assert decoder.feed(data[:split]) == []
        assert decoder.feed(data[split:]) == [ClassifiedEvent.delta("é")]

    def test_finish_classifies_tail(self):
        decoder = ChunkDecoder()
        assert decoder.feed(b'data: {"d":"a"}\ndata: {"d":"b"}') == [ClassifiedEvent.delta("a")]
        assert decoder.finish() == [ClassifiedEvent.delta("b")]

    def test_finish_with_nothing_pending(self):
        decoder = ChunkDecoder()
        decoder.feed(b"data: [DONE]\n")
        assert decoder.finish() == []

    def test_every_split_offset_yields_same_events(self, fixtures):
        text = fixtures.create_generation_stream(["Grüße ", "日本語 ", "🚀"])
        data = text.encode("utf-8")
        expected = replay([data])

        assert [e.kind for e in expected].count(EventKind.DELTA) == 3
        for offset in range(1, len(data)):
            assert replay(fixtures.split_at(data, offset)) == expected

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 13])
    def test_fixed_chunk_sizes_yield_same_events(self, fixtures, size):
        text = fixtures.create_generation_stream(["Hel", "lo ", "wörld"]) + "tail without newline"
        data = text.encode("utf-8")
        assert replay(fixtures.split_every(data, size)) == replay([data])

    def test_content_is_reconstructed(self, fixtures):
        words = ["def ", "añadir", "(a, b):\n", "    return a + b"]
        data = fixtures.create_generation_stream(words).encode("utf-8")
        events = replay(fixtures.split_every(data, 4))
        text = "".join(e.text for e in events if e.kind is EventKind.DELTA)
        assert text == "".join(words)
