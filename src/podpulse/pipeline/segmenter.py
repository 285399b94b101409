"""
Transcript Segmenter

Groups word-level timestamps into readable, sentence-like segments.
Segment timings drive transcript/audio-player synchronization.
"""

from typing import List, Sequence

from ..models import TranscriptSegment, Word

SENTENCE_ENDINGS = (".", "!", "?")
MIN_SENTENCE_WORDS = 5


def segment(
    words: Sequence[Word],
    target_words_per_segment: int = 15,
) -> List[TranscriptSegment]:
    """
    Group words into segments.

    Prefers breaking at sentence-ending punctuation once a segment holds at
    least five words, and falls back to breaking at the target word count.
    The last word always closes the final segment. Timings are copied from
    the words as-is; small overlaps from the transcription source are kept.

    Args:
        words: Ordered word tokens
        target_words_per_segment: Maximum words per segment

    Returns:
        Ordered segments, indexed from zero
    """
    segments: List[TranscriptSegment] = []
    current: List[Word] = []

    for i, word in enumerate(words):
        current.append(word)

        ends_sentence = word.word.strip().endswith(SENTENCE_ENDINGS)
        at_target = len(current) >= target_words_per_segment
        is_last = i == len(words) - 1

        if (ends_sentence and len(current) >= MIN_SENTENCE_WORDS) or at_target or is_last:
            segments.append(
                TranscriptSegment(
                    segment_index=len(segments),
                    text=" ".join(w.word for w in current).strip(),
                    start_time=current[0].start,
                    end_time=current[-1].end,
                    words=list(current),
                )
            )
            current = []

    return segments
