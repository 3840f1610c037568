"""Rich rendering of transcripts and transcription history."""

from typing import List, Optional

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..models.transcription import HistoryPage, TranscriptionRecord
from ..transcription.conversation import (
    assign_speaker_colors,
    distinct_speakers,
    is_multi_speaker,
    parse,
)

SPEAKER_PALETTE = [
    "dodger_blue1",
    "green3",
    "medium_purple1",
    "dark_orange",
    "deep_pink2",
    "turquoise2",
    "gold1",
    "indian_red1",
]


def render_transcript(text: str, palette: Optional[List[str]] = None) -> RenderableType:
    """Conversation view for labeled transcripts, plain text otherwise."""
    if not is_multi_speaker(text):
        return Text(text or "")

    palette = palette or SPEAKER_PALETTE
    turns = parse(text)
    colors = assign_speaker_colors(turns, palette)

    lines = []
    for turn in turns:
        if turn.is_continuation:
            lines.append(Text(f"  {turn.content}", style="dim italic"))
            continue
        color = colors[turn.speaker_label.lower()]
        line = Text()
        line.append("▌ ", style=color)
        line.append(turn.speaker_label, style=f"bold {color}")
        line.append(f": {turn.content}")
        lines.append(line)

    speakers = distinct_speakers(turns)
    summary = Text(f"{len(speakers)} speaker{'s' if len(speakers) != 1 else ''}: ", style="bold")
    for index, speaker in enumerate(speakers):
        if index:
            summary.append(", ")
        summary.append(speaker, style=colors[speaker.lower()])

    return Group(*lines, Panel(summary, border_style="grey50", expand=False))


def render_record(record: TranscriptionRecord) -> Panel:
    """One transcription with its usage details."""
    details = [
        record.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
        f"{record.duration_seconds:.1f}s ({record.duration_minutes} min billed)",
        f"${record.usd_expended:.4f}",
    ]
    if record.tokens_expended:
        details.append(f"{record.tokens_expended} tokens")
    if record.speaker_count is not None:
        details.append(f"{record.speaker_count} speakers detected")

    return Panel(
        render_transcript(record.text),
        title=f"[bold]{record.id}[/bold]",
        subtitle=" · ".join(details),
        border_style="blue",
    )


def render_history(page: HistoryPage) -> Table:
    table = Table(title=f"Transcriptions ({page.total})", show_lines=False)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Created", no_wrap=True)
    table.add_column("Duration", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Text", overflow="ellipsis", max_width=60)

    for record in page.records:
        preview = record.text.replace("\n", " / ")
        table.add_row(
            record.id,
            record.created_at.astimezone().strftime("%Y-%m-%d %H:%M"),
            f"{record.duration_seconds:.1f}s",
            str(record.tokens_expended),
            f"${record.usd_expended:.4f}",
            preview,
        )

    table.caption = f"Total: {page.total_tokens} tokens, ${page.total_cost:.4f}"
    return table
