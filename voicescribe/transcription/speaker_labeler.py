"""Speaker labeling of raw transcripts through a language model."""

import re
import logging
from typing import List, Optional, Protocol, Sequence

from .chatgpt_labeling_engine import EngineReply
from .conversation import parse
from ..models.transcription import LabelingResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert at identifying speakers in conversations and formatting "
    "transcripts with speaker diarization."
)

CODE_FENCE = re.compile(r"^```[\w-]*\s*$")
EMPHASIZED_LABEL = re.compile(r"^[*_]{1,2}\s*([^*_:]+?)\s*(?::\s*[*_]{1,2}|[*_]{1,2}\s*:)\s*")


class LabelingEngine(Protocol):
    """Protocol for engines that answer a prompt."""

    async def send_prompt(self, prompt: str, system_prompt: Optional[str] = None) -> EngineReply:
        ...


def speaker_labels(speaker_count: int = 2, speaker_names: Optional[Sequence[str]] = None) -> List[str]:
    """User-supplied names, or generated ``Speaker 1..N`` labels."""
    if speaker_names:
        names = [name.strip() for name in speaker_names if name and name.strip()]
        if names:
            return names
    return [f"Speaker {i}" for i in range(1, max(1, speaker_count) + 1)]


class SpeakerLabeler:
    """Re-emits a raw transcript as ``<Label>: <utterance>`` lines."""

    def __init__(self, engine: LabelingEngine):
        """Initialize speaker labeler.

        Args:
            engine: Engine that implements the LabelingEngine protocol
        """
        self.engine = engine

    async def label(self, transcript: str, labels: Sequence[str]) -> LabelingResult:
        """Label the transcript, falling back to the raw text on failure.

        Args:
            transcript: Raw transcript from speech-to-text
            labels: Exact speaker labels the model must use

        Returns:
            LabelingResult with the final text and the tokens used
        """
        labels = list(labels)
        if not transcript.strip():
            return LabelingResult(text=transcript, labels=labels, used_fallback=True)

        prompt = self.build_prompt(transcript, labels)
        try:
            reply = await self.engine.send_prompt(prompt, system_prompt=SYSTEM_PROMPT)
        except Exception as e:
            logger.error(f"Speaker labeling failed, using raw transcript: {e!r}")
            return LabelingResult(text=transcript, labels=labels, used_fallback=True)

        labeled = self.normalize_reply(reply.content)
        if not labeled:
            logger.warning("Speaker labeling returned no usable conversation, using raw transcript")
            return LabelingResult(text=transcript, tokens_used=reply.total_tokens,
                                  labels=labels, used_fallback=True)

        logger.info(f"Labeled transcript with {len(labels)} speakers ({reply.total_tokens} tokens)")
        return LabelingResult(text=labeled, tokens_used=reply.total_tokens, labels=labels)

    def build_prompt(self, transcript: str, labels: Sequence[str]) -> str:
        label_list = ", ".join(f'"{label}"' for label in labels)
        example = "\n".join(
            f"   {labels[i % len(labels)]}: [what they said]" for i in range(max(3, len(labels)))
        )
        return f"""Please analyze this transcript and identify the different speakers in the conversation. Format the output as a conversation with speaker labels.

Transcript: "{transcript}"

Instructions:
1. Identify distinct speakers based on context, speaking patterns, and conversation flow
2. Format every line as "<Label>: <utterance>", for example:
{example}
3. Use exactly these speaker labels and no others: {label_list}
4. Be consistent with speaker identification throughout
5. Maintain the natural flow, order, and meaning of the conversation
6. If uncertain about speaker changes, err on the side of fewer speaker transitions

Please provide ONLY the formatted conversation output, no additional commentary."""

    def normalize_reply(self, content: str) -> str:
        """Clean up model output; empty string if it holds no labeled turn."""
        text = (content or "").strip()
        if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
            text = text[1:-1].strip()

        lines = []
        for line in text.splitlines():
            stripped = line.strip()
            if CODE_FENCE.match(stripped):
                continue
            match = EMPHASIZED_LABEL.match(stripped)
            if match:
                stripped = f"{match.group(1).strip()}: {stripped[match.end():].strip()}"
            lines.append(stripped)

        normalized = "\n".join(lines).strip()
        if not any(not turn.is_continuation for turn in parse(normalized)):
            return ""
        return normalized
