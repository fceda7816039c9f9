from __future__ import annotations

import asyncio
import shutil
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog
from PIL import ImageGrab

logger = structlog.get_logger()

SOUND_FILE = "sound.wav"


@dataclass(frozen=True)
class Screenshot:
    path: str
    filename: str
    capture_number: int


class SessionFiles:
    """On-disk layout of one narration session.

    sessions/<session_id>/screenshots/capture_NNN_<timestamp>.png
    sessions/<session_id>/descriptions.txt
    """

    def __init__(self, sessions_dir: str | Path, session_id: str):
        self.session_id = session_id
        self.session_dir = Path(sessions_dir) / session_id
        self.screenshots_dir = self.session_dir / "screenshots"
        self.descriptions_path = self.session_dir / "descriptions.txt"

    def ensure(self) -> None:
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)
        if not self.descriptions_path.exists():
            header = f"Screen Narrator Session - {datetime.now(timezone.utc).isoformat()}\n"
            self.descriptions_path.write_text(f"{header}{'=' * 50}\n\n", encoding="utf-8")

    def screenshot_path(self, capture_number: int, when: datetime) -> Path:
        stamp = when.strftime("%Y-%m-%dT%H-%M-%S-%f")
        return self.screenshots_dir / f"capture_{capture_number:03d}_{stamp}.png"

    def append_description(self, capture_number: int, when: datetime, description: str) -> None:
        self.ensure()
        entry = f"Capture {capture_number} - {when.isoformat()}\n{'-' * 50}\n{description}\n\n"
        with open(self.descriptions_path, "a", encoding="utf-8") as f:
            f.write(entry)


class ScreenGrabber:
    """Full-screen capture through Pillow's ImageGrab."""

    def __init__(self, files: SessionFiles):
        self.files = files

    def _grab(self, path: Path) -> None:
        image = ImageGrab.grab()
        image.save(path, format="PNG")

    async def capture(self, capture_number: int) -> Screenshot | None:
        self.files.ensure()
        path = self.files.screenshot_path(capture_number, datetime.now(timezone.utc))
        try:
            await asyncio.to_thread(self._grab, path)
        except OSError as e:
            logger.error("screenshot_failed", capture_number=capture_number, error=str(e))
            return None
        logger.info("screenshot_captured", capture_number=capture_number, filename=path.name)
        return Screenshot(path=str(path), filename=path.name, capture_number=capture_number)


def _speech_command(text: str) -> list[str] | None:
    if sys.platform == "win32":
        escaped = text.replace("'", "''")
        return [
            "powershell",
            "-command",
            "Add-Type -AssemblyName System.Speech; "
            "$s = New-Object System.Speech.Synthesis.SpeechSynthesizer; "
            f"$s.Rate = 2; $s.Speak('{escaped}')",
        ]
    if sys.platform == "darwin":
        return ["say", "-r", "230", text]
    if shutil.which("espeak"):
        return ["espeak", "-s", "210", text]
    if shutil.which("spd-say"):
        return ["spd-say", "--wait", text]
    return None


def _sound_command(sound_path: Path) -> list[str]:
    if sys.platform == "win32":
        escaped = str(sound_path).replace("'", "''")
        return ["powershell", "-command", f"(New-Object Media.SoundPlayer '{escaped}').PlaySync()"]
    if sys.platform == "darwin":
        return ["afplay", str(sound_path)]
    return ["aplay", str(sound_path)]


async def _run(command: list[str]) -> int:
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await process.communicate()
    if process.returncode:
        raise RuntimeError(stderr.decode(errors="replace").strip() or f"exit code {process.returncode}")
    return process.returncode


async def speak(text: str) -> None:
    """Read text aloud. Raises RuntimeError when playback fails."""
    command = _speech_command(text)
    if command is None:
        raise RuntimeError("No text-to-speech command available")
    try:
        await _run(command)
    except OSError as e:
        raise RuntimeError(str(e)) from e
    logger.info("tts_completed")


async def play_alarm(sound_path: str | Path = SOUND_FILE) -> None:
    """Play the alarm sound. Failures are logged, never raised."""
    try:
        await _run(_sound_command(Path(sound_path)))
    except (OSError, RuntimeError) as e:
        logger.error("alarm_sound_failed", error=str(e)[:200])
        return
    logger.info("alarm_sound_played")
