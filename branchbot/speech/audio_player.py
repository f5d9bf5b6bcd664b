import asyncio
import mimetypes
import subprocess
import tempfile
import threading
from typing import Optional

from loguru import logger


class AudioPlayer:
    """Plays encoded audio through an external command-line player.

    Default command is ffplay, which handles the MP3 the TTS endpoint returns.
    `stop()` kills the player process, which also unblocks `play()`.

    Every `stop()` bumps a generation counter. A playback thread that was
    still starting its process when the stop arrived sees the new generation
    and kills what it just spawned, so a stopped reply never starts playing.
    """

    def __init__(self, command: Optional[list[str]] = None, timeout: float = 120.0):
        self.command = command or ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet"]
        self.timeout = timeout
        self._lock = threading.Lock()
        self._generation = 0
        self._current_process: Optional[subprocess.Popen] = None

    async def play(self, audio: bytes, content_type: str = "audio/mpeg") -> None:
        """Play audio bytes and return when playback ends or is stopped."""
        if not audio:
            return

        with self._lock:
            generation = self._generation

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._play_sync, audio, content_type, generation)
        except asyncio.CancelledError:
            # The worker thread keeps running, make sure its process dies.
            await self.stop()
            raise

    def _play_sync(self, audio: bytes, content_type: str, generation: int) -> None:
        suffix = mimetypes.guess_extension(content_type) or ".mp3"
        try:
            with tempfile.NamedTemporaryFile(suffix=suffix, delete=True) as tmp:
                tmp.write(audio)
                tmp.flush()

                with self._lock:
                    if generation != self._generation:
                        return
                proc = subprocess.Popen(
                    [*self.command, tmp.name],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                )
                with self._lock:
                    stopped = generation != self._generation
                    if not stopped:
                        self._current_process = proc
                if stopped:
                    logger.debug("Playback stopped while the player was starting.")
                    self._kill(proc)
                    proc.wait()
                    return

                try:
                    proc.wait(timeout=self.timeout)
                finally:
                    with self._lock:
                        if self._current_process is proc:
                            self._current_process = None
                # -9: killed by stop()
                if proc.returncode not in (0, -9):
                    stderr = proc.stderr.read().decode().strip()
                    logger.error("Audio player error: {}", stderr)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            logger.error("Audio playback timed out ({}s)", self.timeout)
        except FileNotFoundError:
            logger.error("Audio player '{}' not found.", self.command[0])
            raise

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        try:
            proc.kill()
        except OSError as e:
            logger.debug("Error killing audio player: {}", e)

    def _stop_current(self) -> Optional[subprocess.Popen]:
        with self._lock:
            self._generation += 1
            proc, self._current_process = self._current_process, None
        if proc is not None:
            self._kill(proc)
        return proc

    async def stop(self) -> None:
        """Stop the current playback and any playback that is still starting."""
        if self._stop_current() is not None:
            logger.debug("Audio playback stopped.")

    def close(self):
        self._stop_current()
