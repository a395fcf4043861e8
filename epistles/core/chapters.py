"""
Chapter extraction: find the sermon window in a video description.

Descriptions carry YouTube-style chapter lines ("15:45 Sermon",
"1:52:10 Sermon End"). Each line that starts with a timestamp becomes a
chapter; its label is classified as a start marker, an end marker, or a
plain boundary, and a small scanner pairs markers in text order.
"""

import re
import logging
from dataclasses import dataclass

from epistles.core.error_codes import NoChapterFound
from epistles.core.models_sqlite import ChapterWindow

logger = logging.getLogger(__name__)

END_KEYWORDS = frozenset({"end", "ends", "ending", "finish", "finished", "finishes"})
START_KEYWORDS = frozenset({
    "start", "starts", "begin", "begins", "beginning", "message", "sermon",
})

# Leading bullets/brackets, the timestamp, then separators before the label.
# A timestamp followed by AM/PM is a clock time ("9:00 AM service").
_CHAPTER_LINE_RE = re.compile(
    r'^\s*[-*>\u2022\[(]*\s*'
    r'(?P<ts>\d{1,2}:\d{2}(?::\d{2})?)'
    r'(?![\d:])'
    r'(?!\s*[ap]\.?m\b)'
    r'[\])]*\s*[-:|.)\u2013\u2014]*\s*'
    r'(?P<label>.*?)\s*$',
    re.IGNORECASE,
)
_WORD_RE = re.compile(r'[a-z]+')


class MarkerKind:
    START = "start"
    END = "end"
    BOUNDARY = "boundary"


class ScanState:
    IDLE = "idle"
    OPEN = "open"


@dataclass(frozen=True)
class Chapter:
    offset: int
    label: str
    kind: str


def parse_timestamp(token: str) -> int | None:
    """
    'H:MM:SS', 'MM:SS' or 'M:SS' to seconds. Returns None when a field is
    out of range (seconds >= 60, or minutes >= 60 in the three-part form).
    """
    parts = token.strip().split(':')
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        return None
    values = [int(p) for p in parts]
    if values[-1] >= 60:
        return None
    if len(values) == 3:
        hours, minutes, seconds = values
        if minutes >= 60:
            return None
        return hours * 3600 + minutes * 60 + seconds
    minutes, seconds = values
    return minutes * 60 + seconds


def classify_label(label: str) -> str:
    words = set(_WORD_RE.findall(label.lower()))
    if words & END_KEYWORDS:
        return MarkerKind.END
    if words & START_KEYWORDS:
        return MarkerKind.START
    return MarkerKind.BOUNDARY


def parse_chapters(description: str) -> list[Chapter]:
    """All chapter lines in text order."""
    chapters = []
    for line in (description or "").splitlines():
        m = _CHAPTER_LINE_RE.match(line)
        if not m:
            continue
        offset = parse_timestamp(m.group('ts'))
        if offset is None:
            logger.debug("Ignoring malformed timestamp %r", m.group('ts'))
            continue
        label = m.group('label')
        chapters.append(Chapter(offset=offset, label=label, kind=classify_label(label)))
    return chapters


# ── Selection policies ────────────────────────────────────────────────

def longest_span(windows: list[ChapterWindow]) -> ChapterWindow:
    """Largest duration; the earliest start wins a tie."""
    return max(windows, key=lambda w: (w.duration, -w.start_offset_seconds))


def first_span(windows: list[ChapterWindow]) -> ChapterWindow:
    return min(windows, key=lambda w: (w.start_offset_seconds, -w.duration))


POLICIES = {
    "longest_span": longest_span,
    "first_span": first_span,
}


# ── Extractor ─────────────────────────────────────────────────────────

class ChapterExtractor:
    """
    Line-scanning state machine over parsed chapters.

    IDLE --start--> OPEN(s)
    OPEN(s) --start s2--> OPEN(s2)   (s closed at its next chapter)
    OPEN(s) --end e--> IDLE          (pair (s, e) if e > s, else both dropped)
    IDLE --end--> IDLE               (stray end ignored)
    Boundaries never change state; they only serve as implicit ends.
    """

    def __init__(self, policy=longest_span):
        self.policy = policy

    def candidates(self, description: str, media_duration: int) -> list[ChapterWindow]:
        """
        Explicit start/end pairs when any survive clamping; otherwise the
        implicit spans of unpaired starts.
        """
        if media_duration <= 0:
            raise ValueError("media_duration must be positive")

        chapters = parse_chapters(description)
        offsets = sorted({c.offset for c in chapters})
        pairs, implicit = [], []
        state, open_marker = ScanState.IDLE, None

        for chapter in chapters:
            if chapter.kind == MarkerKind.START:
                if state == ScanState.OPEN:
                    implicit.append((open_marker, self._implicit_end(open_marker.offset, offsets,
                                                                     media_duration)))
                state, open_marker = ScanState.OPEN, chapter
            elif chapter.kind == MarkerKind.END:
                if state != ScanState.OPEN:
                    logger.debug("End marker at %ds without a start, ignored", chapter.offset)
                    continue
                if chapter.offset > open_marker.offset:
                    pairs.append((open_marker, chapter.offset))
                else:
                    logger.debug("Discarding inconsistent pair %ds..%ds",
                                 open_marker.offset, chapter.offset)
                state, open_marker = ScanState.IDLE, None

        if state == ScanState.OPEN:
            implicit.append((open_marker, self._implicit_end(open_marker.offset, offsets,
                                                             media_duration)))

        windows = self._to_windows(pairs, media_duration)
        if windows:
            return windows
        return self._to_windows(implicit, media_duration)

    @staticmethod
    def _to_windows(spans, media_duration: int) -> list[ChapterWindow]:
        windows = []
        for marker, end in spans:
            if marker.offset >= media_duration:
                logger.debug("Discarding window starting past media end: %ds", marker.offset)
                continue
            windows.append(ChapterWindow(
                start_offset_seconds=marker.offset,
                end_offset_seconds=min(end, media_duration),
                label=marker.label or None,
            ))
        return windows

    @staticmethod
    def _implicit_end(start: int, offsets: list[int], media_duration: int) -> int:
        for offset in offsets:
            if offset > start:
                return offset
        return media_duration

    def extract(self, description: str, media_duration: int) -> ChapterWindow:
        windows = self.candidates(description, media_duration)
        if not windows:
            raise NoChapterFound("No sermon chapter markers found in description")
        window = self.policy(windows)
        logger.info("Chapter window %ds..%ds (%s) chosen from %d candidate(s)",
                    window.start_offset_seconds, window.end_offset_seconds,
                    window.label or "unlabelled", len(windows))
        return window


def extract_chapter_window(description: str, media_duration: int,
                           policy=longest_span) -> ChapterWindow:
    return ChapterExtractor(policy).extract(description, media_duration)
