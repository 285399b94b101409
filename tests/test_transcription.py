"""
Tests for chunked transcription: range reads, offsets and the raw-text fallback.
"""

import base64
from unittest.mock import MagicMock

import pytest

from podpulse.pipeline.chunker import ByteChunk
from podpulse.pipeline.transcription import (
    SPOKEN_WORDS_PER_SECOND,
    chunk_duration,
    merge_chunk_words,
    segments_from_text,
    split_sentences,
    transcribe_chunk,
)
from podpulse.storage import LocalBlobStore


def chunk_result(index, words, duration, text=""):
    return {
        "index": index,
        "text": text or " ".join(w[0] for w in words),
        "words": [{"word": w, "start": s, "end": e} for w, s, e in words],
        "duration": duration,
    }


class TestTranscribeChunk:
    def test_reads_only_the_chunk_range(self, tmp_path):
        blobs = LocalBlobStore(tmp_path)
        blobs.put("a.mp3", [b"0123456789"])
        speech = MagicMock()
        speech.transcribe.return_value = {
            "text": "hi",
            "words": [{"word": "hi", "start": 0.0, "end": 0.4}],
            "duration": 3.5,
        }

        result = transcribe_chunk(blobs, "a.mp3", ByteChunk(1, 4, 8), speech, language="en")

        sent = speech.transcribe.call_args.args[0]
        assert base64.b64decode(sent) == b"4567"
        assert speech.transcribe.call_args.kwargs["language"] == "en"
        assert result["index"] == 1
        assert result["duration"] == 3.5


class TestChunkDuration:
    def test_service_duration_preferred(self):
        assert chunk_duration({"duration": 12.0, "words": [{"end": 5.0}]}) == 12.0

    def test_falls_back_to_last_word_end(self):
        assert chunk_duration({"duration": 0.0, "words": [{"end": 1.0}, {"end": 7.5}]}) == 7.5

    def test_no_information(self):
        assert chunk_duration({"duration": 0.0, "words": []}) == 0.0

    def test_estimated_from_text_without_timings(self):
        result = {"duration": 0.0, "words": [], "text": "One two three four five."}
        assert chunk_duration(result) == pytest.approx(5 / SPOKEN_WORDS_PER_SECOND)


class TestMergeChunkWords:
    """Words from later chunks are shifted by earlier chunk durations."""

    def test_offsets_accumulate(self):
        results = [
            chunk_result(0, [("a", 0.0, 1.0)], 10.0),
            chunk_result(1, [("b", 0.0, 1.0)], 12.0),
            chunk_result(2, [("c", 0.5, 1.0)], 8.0),
        ]

        words, total = merge_chunk_words(results)

        assert [w.start for w in words] == [0.0, 10.0, 22.5]
        assert [w.end for w in words] == [1.0, 11.0, 23.0]
        assert total == 30.0

    def test_chunk_without_words_still_advances_offset(self):
        results = [
            chunk_result(0, [], 10.0, text="(silence)"),
            chunk_result(1, [("x", 1.0, 2.0)], 5.0),
        ]
        words, total = merge_chunk_words(results)
        assert words[0].start == 11.0
        assert total == 15.0


class TestTextFallback:
    def test_split_sentences(self):
        assert split_sentences("One. Two? Three!  Four") == ["One.", "Two?", "Three!", "Four"]
        assert split_sentences("   ") == []

    def test_equal_time_slices(self):
        results = [{"index": 0, "text": "First one. Second one.", "words": [], "duration": 10.0}]

        segments = segments_from_text(results)

        assert [s.text for s in segments] == ["First one.", "Second one."]
        assert (segments[0].start_time, segments[0].end_time) == (0.0, 5.0)
        assert (segments[1].start_time, segments[1].end_time) == (5.0, 10.0)
        assert all(s.words == [] for s in segments)

    def test_offset_continues_across_chunks(self):
        results = [
            {"index": 0, "text": "Alpha.", "words": [], "duration": 6.0},
            {"index": 1, "text": "", "words": [], "duration": 4.0},
            {"index": 2, "text": "Beta. Gamma.", "words": [], "duration": 8.0},
        ]

        segments = segments_from_text(results)

        assert [s.segment_index for s in segments] == [0, 1, 2]
        assert segments[1].start_time == pytest.approx(10.0)
        assert segments[2].end_time == pytest.approx(18.0)

    def test_untimed_transcript_gets_positive_spans(self, tmp_path):
        """A service reporting neither duration nor words still yields real time spans."""
        blobs = LocalBlobStore(tmp_path)
        blobs.put("a.mp3", [b"0123"])
        speech = MagicMock()
        speech.transcribe.return_value = {"text": "Hello there. How are you?", "words": [], "duration": 0.0}

        result = transcribe_chunk(blobs, "a.mp3", ByteChunk(0, 0, 4), speech)
        segments = segments_from_text([result])
        _, total = merge_chunk_words([result])

        assert result["duration"] == pytest.approx(2.0)
        assert [s.text for s in segments] == ["Hello there.", "How are you?"]
        assert all(s.end_time > s.start_time for s in segments)
        assert segments[-1].end_time == pytest.approx(2.0)
        assert total == pytest.approx(2.0)
