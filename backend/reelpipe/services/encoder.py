"""ffmpeg-based media encoder.

Assembles the reel in a single ffmpeg invocation:
- every scene input is scaled/cropped to the vertical output frame
- scenes are chained with xfade transitions (concat for hard cuts)
- narration (and optional background music) is mixed under the video
- word-level captions, when present, are burned in with the ass filter

Each scene input is extended by the length of its outgoing transition so
the xfade overlap does not shorten the reel; transition offsets then land
exactly on each scene boundary.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from reelpipe.orchestrator.policy import ServiceError
from reelpipe.schemas.timeline import TimelineScene, TransitionType
from reelpipe.services.base import MediaEncoder

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

DEFAULT_TRANSITION_SECONDS = 0.5

# Scene transition -> ffmpeg xfade transition name
XFADE_TRANSITIONS = {
    TransitionType.FADE: "fade",
    TransitionType.CROSSFADE: "fade",
    TransitionType.ZOOM_IN: "circleclose",
    TransitionType.ZOOM_OUT: "circleopen",
    TransitionType.SLIDE_LEFT: "slideleft",
    TransitionType.SLIDE_RIGHT: "slideright",
    TransitionType.PUSH_LEFT: "wipeleft",
    TransitionType.PUSH_RIGHT: "wiperight",
    TransitionType.BLUR: "pixelize",
    TransitionType.FLASH_WHITE: "fadewhite",
    TransitionType.GLITCH: "pixelize",
}


def is_image(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTENSIONS


def transition_out(scene: TimelineScene) -> tuple[Optional[str], float]:
    """xfade name and length for the transition leaving a scene.

    Returns (None, 0.0) for a hard cut. The length is capped at half the
    scene so two transitions never overlap.
    """
    if scene.transition is not None and scene.transition.type is TransitionType.NONE:
        return None, 0.0
    if scene.transition is None:
        name, seconds = "fade", DEFAULT_TRANSITION_SECONDS
    else:
        name = XFADE_TRANSITIONS.get(scene.transition.type, "fade")
        seconds = scene.transition.duration or DEFAULT_TRANSITION_SECONDS
    return name, round(min(seconds, scene.duration / 2), 3)


def _fmt(seconds: float) -> str:
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def filter_path(path: Path) -> str:
    """Quote a file path for use as a filtergraph option value."""
    value = str(path).replace("\\", "/").replace(":", "\\:")
    return f"'{value}'"


def build_assembly_command(
    audio_path: Path,
    scene_paths: list[Path],
    scenes: list[TimelineScene],
    output_path: Path,
    *,
    width: int,
    height: int,
    fps: int,
    music_path: Optional[Path] = None,
    music_volume: float = 0.15,
    subtitles_path: Optional[Path] = None,
) -> list[str]:
    """Build the ffmpeg argv that renders the final reel."""
    if not scenes:
        raise ValueError("Cannot assemble a reel without scenes")
    if len(scene_paths) != len(scenes):
        raise ValueError(f"Got {len(scene_paths)} scene files for {len(scenes)} scenes")

    transitions = [transition_out(scene) for scene in scenes[:-1]]

    inputs: list[str] = []
    filters: list[str] = []
    for i, (path, scene) in enumerate(zip(scene_paths, scenes)):
        overlap = transitions[i][1] if i < len(transitions) else 0.0
        length = _fmt(scene.duration + overlap)
        if is_image(path):
            inputs += ["-loop", "1", "-t", length, "-i", str(path)]
        else:
            # Loop short clips so every scene fills its slot
            inputs += ["-stream_loop", "-1", "-t", length, "-i", str(path)]
        filters.append(
            f"[{i}:v]scale={width}:{height}:force_original_aspect_ratio=increase,"
            f"crop={width}:{height},setsar=1,fps={fps},format=yuv420p,"
            f"trim=duration={length},setpts=PTS-STARTPTS[s{i}]"
        )

    last = "s0"
    elapsed = 0.0
    for i, (name, seconds) in enumerate(transitions, start=1):
        label = f"x{i}"
        elapsed += scenes[i - 1].duration
        if name is None:
            filters.append(f"[{last}][s{i}]concat=n=2:v=1:a=0[{label}]")
            last = label
            continue
        filters.append(
            f"[{last}][s{i}]xfade=transition={name}:duration={_fmt(seconds)}:"
            f"offset={_fmt(elapsed)}[{label}]"
        )
        last = label

    if subtitles_path is not None:
        filters.append(f"[{last}]ass={filter_path(subtitles_path)}[vout]")
        last = "vout"

    voice_index = len(scenes)
    inputs += ["-i", str(audio_path)]
    if music_path is not None:
        inputs += ["-stream_loop", "-1", "-i", str(music_path)]
        filters.append(f"[{voice_index}:a]aresample=48000[voice]")
        filters.append(f"[{voice_index + 1}:a]aresample=48000,volume={music_volume}[music]")
        filters.append("[voice][music]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[aout]")
    else:
        filters.append(f"[{voice_index}:a]aresample=48000[aout]")

    return [
        "ffmpeg",
        "-y",
        *inputs,
        "-filter_complex",
        ";".join(filters),
        "-map", f"[{last}]",
        "-map", "[aout]",
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-crf", "23",
        "-pix_fmt", "yuv420p",
        "-r", str(fps),
        "-c:a", "aac",
        "-b:a", "192k",
        "-movflags", "+faststart",
        "-shortest",
        str(output_path),
    ]


async def _run(cmd: list[str]) -> bytes:
    """Run ffmpeg/ffprobe to completion and return its stdout.

    If the awaiting task is cancelled (a call timeout included) the child
    is killed and reaped before the cancellation propagates, so no process
    outlives the call that started it.

    Raises:
        ServiceError: If the binary exits non-zero.
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
        await process.wait()
        logger.warning(f"{cmd[0]} (pid {process.pid}) killed after cancellation")
        raise

    if process.returncode != 0:
        message = stderr.decode(errors="replace") if stderr else "No error output"
        logger.error(f"{cmd[0]} error: {message}")
        raise ServiceError(f"{cmd[0]} exited with {process.returncode}: {message.strip()[-300:]}")
    return stdout


class FFmpegEncoder(MediaEncoder):
    """MediaEncoder running the ffmpeg/ffprobe binaries as child processes."""

    def __init__(self, width: int = 1080, height: int = 1920, fps: int = 30, music_volume: float = 0.15):
        self.width = width
        self.height = height
        self.fps = fps
        self.music_volume = music_volume

    @classmethod
    def from_settings(cls, pipeline_config) -> "FFmpegEncoder":
        return cls(
            width=pipeline_config.output_width,
            height=pipeline_config.output_height,
            fps=pipeline_config.output_fps,
            music_volume=pipeline_config.music_volume,
        )

    async def probe_duration(self, path: Path) -> float:
        stdout = await _run([
            "ffprobe",
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
        ])
        raw = stdout.decode().strip()
        try:
            return float(raw)
        except ValueError:
            raise ServiceError(f"ffprobe returned no duration for {Path(path).name}: {raw!r}")

    async def assemble(
        self,
        audio_path: Path,
        scene_paths: list[Path],
        scenes: list[TimelineScene],
        output_path: Path,
        *,
        music_path: Optional[Path] = None,
        subtitles_path: Optional[Path] = None,
    ) -> Path:
        cmd = build_assembly_command(
            audio_path,
            scene_paths,
            scenes,
            output_path,
            width=self.width,
            height=self.height,
            fps=self.fps,
            music_path=music_path,
            music_volume=self.music_volume,
            subtitles_path=subtitles_path,
        )
        logger.info(
            f"Assembling {len(scenes)} scenes -> {output_path.name}"
            f"{' with background music' if music_path else ''}"
            f"{' and captions' if subtitles_path else ''}"
        )
        await _run(cmd)

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise ServiceError(f"ffmpeg produced no output at {output_path.name}")
        return output_path

    async def extract_thumbnail(self, video_path: Path, output_path: Path) -> Path:
        duration = await self.probe_duration(video_path)
        await _run([
            "ffmpeg",
            "-y",
            "-ss", _fmt(duration / 2),
            "-i", str(video_path),
            "-frames:v", "1",
            "-q:v", "2",
            str(output_path),
        ])
        return output_path
