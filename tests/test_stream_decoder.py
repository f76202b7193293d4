"""
Unit tests for stream decoding.

Tests record framing, sentinel handling, malformed-record tolerance and
chunk-boundary independence.
"""

import json

import pytest

from chat_ledger.core.stream_decoder import ContentDelta, MetadataEnvelope, StreamDecoder


def _data(payload) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


METADATA_PAYLOAD = {
    "metadata": {
        "executedTools": ["web_search", "code_interpreter"],
        "usageBreakdown": {
            "models": [
                {
                    "model": "llama-3.3-70b-versatile",
                    "usage": {"prompt_tokens": 100, "completion_tokens": 20, "total_tokens": 120},
                }
            ]
        },
    }
}


class TestDecodeLines:
    """Test decoding of pre-split lines."""

    def test_content_deltas_in_order(self):
        """Verify content records become ordered deltas."""
        decoder = StreamDecoder()
        lines = [
            'data: {"content": "Hel"}',
            "",
            'data: {"content": "lo"}',
            "",
            "data: [DONE]",
        ]
        records = list(decoder.decode_lines(lines))
        assert records == [ContentDelta("Hel"), ContentDelta("lo")]
        assert decoder.finished
        assert decoder.skipped_records == 0

    def test_sentinel_emits_no_record_and_stops(self):
        """Verify nothing after the sentinel is decoded."""
        decoder = StreamDecoder()
        lines = ["data: [DONE]", 'data: {"content": "late"}']
        assert list(decoder.decode_lines(lines)) == []
        assert decoder.finished

    def test_stops_pulling_lines_after_sentinel(self):
        """Verify the source iterator is not read past the sentinel."""
        consumed = []

        def source():
            for line in ['data: {"content": "a"}', "data: [DONE]", "data: never"]:
                consumed.append(line)
                yield line

        list(StreamDecoder().decode_lines(source()))
        assert consumed == ['data: {"content": "a"}', "data: [DONE]"]

    def test_transport_end_without_sentinel(self):
        """Verify decoding ends cleanly when the stream just stops."""
        decoder = StreamDecoder()
        records = list(decoder.decode_lines(['data: {"content": "partial"}']))
        assert records == [ContentDelta("partial")]
        assert not decoder.finished

    def test_malformed_line_between_valid_deltas(self):
        """Verify an invalid JSON line is skipped and counted."""
        decoder = StreamDecoder()
        lines = [
            'data: {"content": "first"}',
            "data: {not json",
            'data: {"content": "second"}',
            "data: [DONE]",
        ]
        records = list(decoder.decode_lines(lines))
        assert records == [ContentDelta("first"), ContentDelta("second")]
        assert decoder.skipped_records == 1

    def test_non_object_json_is_skipped(self):
        """Verify JSON values that are not objects are skipped."""
        decoder = StreamDecoder()
        assert list(decoder.decode_lines(["data: [1, 2]", 'data: "text"'])) == []
        assert decoder.skipped_records == 2

    def test_non_data_lines_ignored(self):
        """Verify comments and other SSE fields are ignored without counting."""
        decoder = StreamDecoder()
        lines = [": keep-alive", "event: message", "id: 7", 'data:{"content": "x"}']
        assert list(decoder.decode_lines(lines)) == [ContentDelta("x")]
        assert decoder.skipped_records == 0

    def test_empty_content_is_not_a_delta(self):
        """Verify empty content fields yield nothing."""
        assert list(StreamDecoder().decode_lines(['data: {"content": ""}'])) == []

    def test_metadata_envelope(self):
        """Verify metadata records carry tools and usage breakdown."""
        records = list(StreamDecoder().decode_lines([_data(METADATA_PAYLOAD).strip()]))
        assert len(records) == 1
        envelope = records[0]
        assert isinstance(envelope, MetadataEnvelope)
        assert envelope.executed_tools == ["web_search", "code_interpreter"]
        assert envelope.usage_breakdown[0].model == "llama-3.3-70b-versatile"
        assert envelope.usage_breakdown[0].total_tokens == 120

    def test_content_and_metadata_in_one_record(self):
        """Verify a record with both fields yields the delta first."""
        payload = dict(METADATA_PAYLOAD, content="done")
        records = list(StreamDecoder().decode_lines([_data(payload).strip()]))
        assert isinstance(records[0], ContentDelta)
        assert isinstance(records[1], MetadataEnvelope)

    def test_malformed_metadata_is_skipped(self):
        """Verify metadata with the wrong shape is counted as skipped."""
        decoder = StreamDecoder()
        lines = ['data: {"metadata": {"executedTools": "web_search"}}']
        assert list(decoder.decode_lines(lines)) == []
        assert decoder.skipped_records == 1

    def test_invalid_usage_entry_keeps_envelope(self):
        """Verify a bad usage entry is dropped without losing tools or valid entries."""
        payload = {
            "metadata": {
                "executedTools": ["web_search"],
                "usageBreakdown": {
                    "models": [
                        {"model": "m", "usage": {"prompt_tokens": 1, "completion_tokens": 1,
                                                 "total_tokens": 3}},
                        {"usage": {"prompt_tokens": 2, "completion_tokens": 2}},
                        {"model": "llama-3.1-8b-instant",
                         "usage": {"prompt_tokens": 5, "completion_tokens": 5}},
                    ]
                },
            }
        }
        decoder = StreamDecoder()
        records = list(decoder.decode_lines([_data(payload).strip()]))

        assert len(records) == 1
        assert records[0].executed_tools == ["web_search"]
        assert [u.model for u in records[0].usage_breakdown] == ["llama-3.1-8b-instant"]
        assert decoder.skipped_records == 2

    def test_invalid_usage_entry_raises_without_handler(self):
        """Verify direct parsing stays strict about usage entries."""
        with pytest.raises(ValueError, match="must equal"):
            MetadataEnvelope.from_payload({"usageBreakdown": {"models": [
                {"model": "m", "usage": {"prompt_tokens": 1, "completion_tokens": 1,
                                         "total_tokens": 3}}
            ]}})

    def test_decoder_is_single_use(self):
        """Verify a decoder refuses a second stream."""
        decoder = StreamDecoder()
        list(decoder.decode_lines(["data: [DONE]"]))
        with pytest.raises(RuntimeError, match="cannot be reused"):
            list(decoder.decode_lines(["data: [DONE]"]))


class TestDecodeChunks:
    """Test decoding of raw transport chunks."""

    BODY = (
        _data({"content": "Hello"})
        + _data({"content": ", wörld"})
        + _data(METADATA_PAYLOAD)
        + "data: [DONE]\n\n"
    ).encode("utf-8")

    def _decode(self, chunks):
        decoder = StreamDecoder()
        return list(decoder.decode_chunks(chunks)), decoder

    def test_whole_body(self):
        """Verify the body decodes in one chunk."""
        records, decoder = self._decode([self.BODY])
        assert [r.text for r in records if isinstance(r, ContentDelta)] == ["Hello", ", wörld"]
        assert isinstance(records[-1], MetadataEnvelope)
        assert decoder.finished

    def test_chunk_boundaries_do_not_matter(self):
        """Verify every split position yields the same records."""
        expected, _ = self._decode([self.BODY])
        for size in (1, 2, 3, 7, 16, 64):
            chunks = [self.BODY[i:i + size] for i in range(0, len(self.BODY), size)]
            records, decoder = self._decode(chunks)
            assert records == expected, f"chunk size {size}"
            assert decoder.finished

    def test_split_multibyte_character(self):
        """Verify a UTF-8 character split across chunks survives."""
        body = _data({"content": "ö"}).encode("utf-8")
        split = body.index("ö".encode("utf-8")) + 1
        records, _ = self._decode([body[:split], body[split:]])
        assert records == [ContentDelta("ö")]

    def test_final_line_without_newline(self):
        """Verify a trailing record without newline is still decoded."""
        records, _ = self._decode([b'data: {"content": "tail"}'])
        assert records == [ContentDelta("tail")]

    def test_crlf_line_endings(self):
        """Verify CRLF-framed streams decode."""
        records, decoder = self._decode([b'data: {"content": "a"}\r\n\r\ndata: [DONE]\r\n'])
        assert records == [ContentDelta("a")]
        assert decoder.finished

    def test_long_line_in_small_chunks(self):
        """Verify a long record delivered a few bytes at a time decodes once."""
        text = "lorem ipsum " * 5000
        body = (_data({"content": text}) + "data: [DONE]\n\n").encode("utf-8")
        chunks = [body[i:i + 3] for i in range(0, len(body), 3)]
        records, decoder = self._decode(chunks)
        assert records == [ContentDelta(text)]
        assert decoder.finished

    def test_several_lines_in_one_chunk_after_partial(self):
        """Verify a chunk completing one line and carrying more is split correctly."""
        records, _ = self._decode([
            'data: {"content": "a',
            '"}\ndata: {"content": "b"}\ndata: {"content": "c',
            '"}\n',
        ])
        assert records == [ContentDelta("a"), ContentDelta("b"), ContentDelta("c")]

    def test_text_chunks(self):
        """Verify str chunks are accepted as well as bytes."""
        records, _ = self._decode(['data: {"con', 'tent": "x"}\n'])
        assert records == [ContentDelta("x")]
