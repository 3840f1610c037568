"""Interactive recorder: capture, level meter, submission and history."""

import asyncio
import logging
import select
import sys
from typing import List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.text import Text

from ..audio import CaptureController, LevelVisualizer, render_level_frame
from ..errors import CaptureError, CaptureStateError, SubmissionInProgress, TranscriptionRequestError
from ..models.api import SubmitOptions
from ..models.audio import LevelFrame, RecordingState
from ..models.transcription import HistoryPage, TranscriptionRecord
from ..transcription.client import TranscriptionClient
from .conversation_view import render_history, render_record

logger = logging.getLogger(__name__)


class RecorderSession:
    """Single owner of the recorder's mutable state.

    Holds the capture controller, the transcription list (newest first) and
    the loading flag that serializes submissions.
    """

    def __init__(self, controller: CaptureController, client: TranscriptionClient):
        self.controller = controller
        self.client = client
        self.transcriptions: List[TranscriptionRecord] = []
        self.loading = False
        self.last_error: Optional[str] = None

    async def submit(self, options: Optional[SubmitOptions] = None) -> TranscriptionRecord:
        """Upload the captured clip.

        On success the controller returns to IDLE and the record is put at the
        front of the list. On failure the clip stays captured for a retry.

        Raises:
            SubmissionInProgress: If a submission is already running
            CaptureStateError: If there is no captured clip
            TranscriptionRequestError: If the request fails
        """
        if self.loading:
            raise SubmissionInProgress("A transcription is already in progress")
        captured = self.controller.captured
        if self.controller.state != RecordingState.CAPTURED or captured is None:
            raise CaptureStateError(f"No captured recording to submit ({self.controller.state.value})")

        self.loading = True
        self.last_error = None
        try:
            record = await self.client.submit(captured, options)
        except TranscriptionRequestError as e:
            self.last_error = str(e)
            raise
        finally:
            self.loading = False

        self.controller.mark_submitted()
        self.transcriptions.insert(0, record)
        return record

    async def load_history(self) -> HistoryPage:
        page = await self.client.list_transcriptions()
        self.transcriptions = list(page.records)
        return page

    async def delete(self, record_id: str) -> None:
        await self.client.delete_transcription(record_id)
        self.transcriptions = [r for r in self.transcriptions if r.id != record_id]

    async def clear(self) -> int:
        deleted = await self.client.clear_transcriptions()
        self.transcriptions = []
        return deleted


class RecorderScreen:
    """Line-command terminal interface around a RecorderSession."""

    def __init__(self, session: RecorderSession, options: Optional[SubmitOptions] = None,
                 console: Optional[Console] = None):
        self.session = session
        self.options = options or SubmitOptions()
        self.console = console or Console()
        self.latest_frame: Optional[LevelFrame] = None
        self.visualizer = LevelVisualizer(on_frame=self._on_frame, on_clear=self._on_clear, fps=20)
        self.running = False

    @property
    def controller(self) -> CaptureController:
        return self.session.controller

    def run(self) -> None:
        self.running = True
        self.console.print("🎙️  VoiceScribe recorder", style="bold blue")
        self._load_history()

        try:
            while self.running:
                self.show_status()
                command = self.console.input("[bold]> [/bold]").strip().lower()
                if command:
                    self.handle_command(command)
        except (KeyboardInterrupt, EOFError):
            self.running = False
        finally:
            self.cleanup()

    def show_status(self) -> None:
        state = self.controller.state
        self.console.rule()
        if state == RecordingState.CAPTURED and self.controller.captured is not None:
            captured = self.controller.captured
            self.console.print(f"📼 Recording ready: {captured.duration_seconds:.1f}s "
                               f"({captured.size_bytes} bytes)", style="bold green")
            self.console.print("  [bold green]t[/bold green] transcribe   "
                               "[bold magenta]d[/bold magenta] transcribe with speakers   "
                               "[bold red]x[/bold red] discard")
        else:
            self.console.print("  [bold cyan]m[/bold cyan] test microphone   "
                               "[bold green]r[/bold green] record   "
                               "[bold blue]h[/bold blue] history   "
                               "[bold yellow]del ID[/bold yellow] delete   "
                               "[bold red]clear[/bold red] delete all   "
                               "[bold]q[/bold] quit")
        if self.session.last_error:
            self.console.print(f"❌ {self.session.last_error}", style="red")

    def handle_command(self, command: str) -> None:
        state = self.controller.state
        try:
            if command == 'q':
                self.running = False
            elif command == 'm' and state == RecordingState.IDLE:
                self.test_microphone()
            elif command == 'r' and state == RecordingState.IDLE:
                self.record()
            elif command == 't' and state == RecordingState.CAPTURED:
                self.submit(SubmitOptions())
            elif command == 'd' and state == RecordingState.CAPTURED:
                self.submit(self.options if self.options.diarize else self._ask_diarization_options())
            elif command == 'x' and state == RecordingState.CAPTURED:
                self.controller.discard()
                self.console.print("🗑️  Recording discarded", style="yellow")
            elif command == 'h':
                self._load_history(show=True)
            elif command.startswith('del '):
                self._delete(command[4:].strip())
            elif command == 'clear':
                self._clear()
            else:
                self.console.print(f"Unknown command: {command}", style="red")
        except CaptureError as e:
            self.console.print(f"🎤 {e}", style="bold red")
            logger.error(f"Capture error: {e}")
        except TranscriptionRequestError as e:
            self.console.print(f"❌ {e}", style="bold red")

    def test_microphone(self) -> None:
        self.controller.start_test()
        line = ""
        try:
            line = self._monitor("Testing microphone: press Enter to stop, or type r + Enter to start recording")
        finally:
            if line != 'r':
                self.controller.stop_test()
        if line == 'r':
            # Recording reuses the device opened for the test
            self.record()

    def record(self) -> None:
        self.controller.start_recording()
        try:
            self._monitor("● Recording: press Enter to stop", show_elapsed=True)
        finally:
            captured = self.controller.stop_recording()
        self.console.print(f"⏹️  Captured {captured.duration_seconds:.1f}s of audio", style="green")

    def submit(self, options: SubmitOptions) -> None:
        try:
            with self.console.status("Transcribing..."):
                record = asyncio.run(self.session.submit(options))
        except SubmissionInProgress as e:
            self.console.print(f"⏳ {e}", style="yellow")
            return
        self.console.print(render_record(record))

    def cleanup(self) -> None:
        self.visualizer.set_active(False)
        self.controller.shutdown()
        self.console.print("\n👋 VoiceScribe session ended", style="bold blue")
        logger.info("RecorderScreen cleanup completed")

    def _monitor(self, title: str, show_elapsed: bool = False) -> str:
        """Show the live level meter until the user enters a line; return that line."""
        self.latest_frame = None
        with Live(self._live_view(title, show_elapsed), console=self.console,
                  refresh_per_second=10, transient=True) as live:
            self.visualizer.set_active(True)
            try:
                while True:
                    if select.select([sys.stdin], [], [], 0.1)[0]:
                        return sys.stdin.readline().strip().lower()
                    if self.controller.last_error is not None:
                        raise CaptureError(f"Microphone stopped: {self.controller.last_error}")
                    live.update(self._live_view(title, show_elapsed))
            finally:
                self.visualizer.set_active(False)

    def _live_view(self, title: str, show_elapsed: bool) -> Panel:
        parts = []
        if show_elapsed:
            stats = self.controller.get_recording_stats()
            elapsed = stats.elapsed_seconds
            line = Text(f"{elapsed // 60:02d}:{elapsed % 60:02d}", style="bold red")
            line.append(f"   {stats.fragment_count} fragments, {stats.sample_rate} Hz", style="dim")
            parts.append(line)
        parts.append(render_level_frame(self.latest_frame) if self.latest_frame else Text(""))
        return Panel(Group(*parts), title=title, border_style="red" if show_elapsed else "cyan")

    def _on_frame(self, frame: LevelFrame) -> None:
        self.latest_frame = frame

    def _on_clear(self) -> None:
        self.latest_frame = None

    def _ask_diarization_options(self) -> SubmitOptions:
        names = Prompt.ask("Speaker names, comma separated (empty for automatic)", default="",
                           console=self.console)
        speaker_names = [name.strip() for name in names.split(",") if name.strip()]
        if speaker_names:
            return SubmitOptions(diarize=True, expected_speaker_count=max(2, len(speaker_names)),
                                 speaker_names=speaker_names)
        count = IntPrompt.ask("Number of speakers", default=self.options.expected_speaker_count,
                              console=self.console)
        return SubmitOptions(diarize=True, expected_speaker_count=max(2, count))

    def _load_history(self, show: bool = False) -> None:
        try:
            page = asyncio.run(self.session.load_history())
        except TranscriptionRequestError as e:
            self.console.print(f"⚠️  Could not load history: {e}", style="yellow")
            return
        if show:
            self.console.print(render_history(page))

    def _delete(self, record_id: str) -> None:
        if not record_id:
            self.console.print("Usage: del <id>", style="red")
            return
        asyncio.run(self.session.delete(record_id))
        self.console.print(f"🗑️  Deleted {record_id}", style="yellow")

    def _clear(self) -> None:
        if not Confirm.ask("Delete all transcriptions?", default=False, console=self.console):
            return
        deleted = asyncio.run(self.session.clear())
        self.console.print(f"🗑️  Deleted {deleted} transcriptions", style="yellow")
