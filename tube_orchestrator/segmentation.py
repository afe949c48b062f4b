"""Script segmentation for per-segment visual prompts"""

import re
from typing import List

MIN_PARAGRAPH_CHARS = 50
MAX_SEGMENT_CHARS = 300
MIN_SEGMENTS = 3
MAX_SEGMENTS = 10
WORDS_PER_MINUTE = 150
MIN_DURATION_SECONDS = 3.0

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?]) ")


def _split_long_paragraph(paragraph: str) -> List[str]:
    """Greedily pack sentences into segments of at most MAX_SEGMENT_CHARS"""
    segments: List[str] = []
    current = ""
    for sentence in _SENTENCE_BREAK.split(paragraph):
        sentence = sentence.strip()
        if not sentence:
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if current and len(candidate) > MAX_SEGMENT_CHARS:
            segments.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        segments.append(current)
    return segments


def segment_script(script: str) -> List[str]:
    """
    Split a script into narration segments.

    Paragraphs (blank-line separated) under 50 characters are dropped; those
    over 300 are re-split on sentence boundaries. Fewer than 3 resulting
    segments falls back to the whole script as a single segment; more than 10
    are truncated to the first 10.
    """
    segments: List[str] = []
    for paragraph in _PARAGRAPH_BREAK.split(script):
        paragraph = paragraph.strip()
        if len(paragraph) < MIN_PARAGRAPH_CHARS:
            continue
        if len(paragraph) > MAX_SEGMENT_CHARS:
            segments.extend(_split_long_paragraph(paragraph))
        else:
            segments.append(paragraph)

    if len(segments) < MIN_SEGMENTS:
        return [script]
    return segments[:MAX_SEGMENTS]


def word_count(text: str) -> int:
    return len(text.split())


def estimate_duration(segment: str) -> float:
    """Narration time in seconds at 150 wpm, never below 3 seconds"""
    return max(MIN_DURATION_SECONDS, word_count(segment) / WORDS_PER_MINUTE * 60)
