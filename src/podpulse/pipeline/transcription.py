"""
Chunked Transcription

Transcribes one byte-range chunk at a time and stitches chunk results into
a single timeline. Word timestamps from each chunk start at zero, so every
chunk is shifted by the total duration of the chunks before it.
"""

import base64
import logging
import re
from typing import List, Tuple

from ..models import TranscriptSegment, Word
from ..storage import BlobStore
from .chunker import ByteChunk
from .services import SpeechToTextClient

logger = logging.getLogger(__name__)

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

# Roughly 150 words per minute
SPOKEN_WORDS_PER_SECOND = 2.5


def transcribe_chunk(
    blobs: BlobStore,
    blob_key: str,
    chunk: ByteChunk,
    speech: SpeechToTextClient,
    language: str = "en",
) -> dict:
    """
    Read one chunk from the blob store and transcribe it.

    Returns:
        Dict with index, text, words (chunk-relative times) and duration
    """
    audio = blobs.get(blob_key, chunk.as_range())
    audio_b64 = base64.b64encode(audio).decode("ascii")
    del audio

    result = speech.transcribe(audio_b64, language=language)
    duration = chunk_duration(result)

    logger.info(
        f"Chunk {chunk.index}: {len(result['words'])} words, {duration:.1f}s"
    )
    return {
        "index": chunk.index,
        "text": result["text"],
        "words": result["words"],
        "duration": duration,
    }


def chunk_duration(result: dict) -> float:
    """
    Duration reported by the service, else the end of the last word, else
    an estimate from the word count of the text at a typical speaking rate.
    """
    if result.get("duration"):
        return float(result["duration"])
    if result.get("words"):
        return float(result["words"][-1]["end"])
    return estimate_speech_duration(result.get("text") or "")


def estimate_speech_duration(text: str) -> float:
    return len(text.split()) / SPOKEN_WORDS_PER_SECOND


def merge_chunk_words(chunk_results: List[dict]) -> Tuple[List[Word], float]:
    """
    Concatenate chunk words onto one timeline.

    Args:
        chunk_results: Chunk results in chunk order

    Returns:
        Tuple of (offset-corrected words, total duration in seconds)
    """
    words: List[Word] = []
    offset = 0.0

    for result in chunk_results:
        for w in result["words"]:
            words.append(
                Word(word=w["word"], start=w["start"] + offset, end=w["end"] + offset)
            )
        offset += chunk_duration(result)

    return words, offset


def split_sentences(text: str) -> List[str]:
    """Split text after sentence-ending punctuation."""
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text.strip()) if s.strip()]


def segments_from_text(chunk_results: List[dict]) -> List[TranscriptSegment]:
    """
    Build estimated segments when the service returned no word timings.

    Each chunk's text is split into sentences that share the chunk's
    duration equally, continuing the running time offset across chunks.
    """
    segments: List[TranscriptSegment] = []
    offset = 0.0

    for result in chunk_results:
        sentences = split_sentences(result["text"])
        duration = chunk_duration(result)

        if sentences:
            slice_length = duration / len(sentences)
            for i, sentence in enumerate(sentences):
                segments.append(
                    TranscriptSegment(
                        segment_index=len(segments),
                        text=sentence,
                        start_time=offset + i * slice_length,
                        end_time=offset + (i + 1) * slice_length,
                        words=[],
                    )
                )
        offset += duration

    logger.info(f"Built {len(segments)} estimated segments from raw text")
    return segments
