"""Parsing of speaker-labeled transcripts.

A labeled transcript has one turn per line, ``<Label>: <utterance>``. Lines
without a label are continuations of the surrounding conversation.
"""

import re
from typing import Dict, Iterable, List, Sequence

from ..models.transcription import ConversationTurn

SPEAKER_MARKER = re.compile(r"\w+\s*:")
TURN_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")


def is_multi_speaker(text: str) -> bool:
    """True if the text contains at least one ``<label>:`` marker."""
    return bool(text) and SPEAKER_MARKER.search(text) is not None


def parse(text: str) -> List[ConversationTurn]:
    """Split a transcript into speaker turns and continuation lines."""
    turns = []
    for line in (text or "").splitlines():
        line = line.strip()
        if not line:
            continue

        match = TURN_PATTERN.match(line)
        if match and match.group(1).strip():
            turn = ConversationTurn(content=match.group(2).strip(), speaker_label=match.group(1).strip())
        else:
            turn = ConversationTurn(content=line)

        if turn.content:
            turns.append(turn)
    return turns


def distinct_speakers(turns: Iterable[ConversationTurn]) -> List[str]:
    """Speaker labels in order of first appearance, compared case-insensitively.

    Each speaker is reported with the spelling of its first appearance.
    """
    seen: Dict[str, str] = {}
    for turn in turns:
        if turn.is_continuation:
            continue
        key = turn.speaker_label.lower()
        if key not in seen:
            seen[key] = turn.speaker_label
    return list(seen.values())


def assign_speaker_colors(turns: Iterable[ConversationTurn], palette: Sequence[str]) -> Dict[str, str]:
    """Map each lower-cased speaker label to a palette entry, cycling when needed."""
    return {
        speaker.lower(): palette[index % len(palette)]
        for index, speaker in enumerate(distinct_speakers(turns))
    }


def count_labels_present(text: str, labels: Iterable[str]) -> int:
    """Number of distinct labels that appear as ``<label>:`` in the text."""
    lowered = (text or "").lower()
    present = set()
    for label in labels:
        key = label.strip().lower()
        if key and re.search(r"(?<!\w)" + re.escape(key) + r"\s*:", lowered):
            present.add(key)
    return len(present)
