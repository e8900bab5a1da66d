import os, subprocess, shutil, tempfile, logging
from typing import List, Optional
from .settings import FFMPEG_BINARY

logger = logging.getLogger(__name__)

# Fixed encoder settings for every still-image segment
SEGMENT_PRESET = "ultrafast"
SEGMENT_CRF = "23"

class FFmpegError(RuntimeError):
    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr

def write_bytes(path: str, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)

def write_text(path: str, text: str):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)

def _run(cmd: List[str], cwd: Optional[str] = None):
    logger.info(f"Running FFmpeg command: {' '.join(cmd)}")
    proc = subprocess.run(cmd, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    if proc.returncode != 0:
        error_msg = proc.stderr.decode("utf-8", errors="ignore")
        logger.error(f"FFmpeg command failed with return code {proc.returncode}: {error_msg[-2000:]}")
        raise FFmpegError(f"FFmpeg failed with return code {proc.returncode}", stderr=error_msg)
    logger.debug("FFmpeg command completed successfully")

def format_seconds(value: float) -> str:
    # "2" rather than "2.0"; keeps fractional durations exact
    return f"{value:g}" if float(value).is_integer() else repr(float(value))

def segment_args(image_name: str, out_name: str, duration: float, width: int, height: int, fps: int, background_color: str) -> List[str]:
    """Encode one still image as a fixed-length clip, letterboxed into width x height."""
    vf = (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:{background_color},"
        f"format=yuv420p"
    )
    return [
        "-loop", "1",
        "-framerate", str(fps),
        "-i", image_name,
        "-t", format_seconds(duration),
        "-vf", vf,
        "-r", str(fps),
        "-c:v", "libx264",
        "-preset", SEGMENT_PRESET,
        "-crf", SEGMENT_CRF,
        "-pix_fmt", "yuv420p",
        out_name,
    ]

def concat_list(names: List[str]) -> str:
    return "".join(f"file '{n}'\n" for n in names)

def concat_args(list_name: str, out_name: str) -> List[str]:
    return ["-f", "concat", "-safe", "0", "-i", list_name, "-c", "copy", out_name]

def audio_concat_args(list_name: str, out_name: str) -> List[str]:
    return ["-f", "concat", "-safe", "0", "-i", list_name, "-c:a", "aac", out_name]

def mux_args(video_name: str, audio_name: str, out_name: str) -> List[str]:
    return ["-i", video_name, "-i", audio_name, "-c:v", "copy", "-c:a", "aac", "-shortest", out_name]

class FFmpegEngine:
    """Handle on the ffmpeg binary plus a private working directory.

    Files are addressed by bare names inside the working directory, so
    one engine must only serve one assembly at a time.
    """

    def __init__(self, binary: str = FFMPEG_BINARY, work_dir: Optional[str] = None):
        self.binary = binary
        self.work_dir = work_dir
        self._owns_work_dir = work_dir is None
        self.loaded = False

    def load(self):
        if self.loaded:
            return
        resolved = shutil.which(self.binary)
        if not resolved:
            raise FFmpegError(f"ffmpeg binary not found: {self.binary}")
        _run([resolved, "-version"])
        if self.work_dir is None:
            self.work_dir = tempfile.mkdtemp(prefix="storytime-ffmpeg-")
        os.makedirs(self.work_dir, exist_ok=True)
        self.binary = resolved
        self.loaded = True
        logger.info(f"FFmpeg engine ready: {resolved} (work dir {self.work_dir})")

    def _path(self, name: str) -> str:
        if os.path.basename(name) != name:
            raise ValueError(f"engine file names must be bare names: {name!r}")
        return os.path.join(self.work_dir, name)

    def write_file(self, name: str, data: bytes):
        with open(self._path(name), "wb") as f:
            f.write(data)

    def write_text(self, name: str, text: str):
        self.write_file(name, text.encode("utf-8"))

    def read_file(self, name: str) -> bytes:
        with open(self._path(name), "rb") as f:
            return f.read()

    def delete_file(self, name: str):
        try:
            os.remove(self._path(name))
        except FileNotFoundError:
            pass

    def list_files(self) -> List[str]:
        return sorted(os.listdir(self.work_dir)) if self.work_dir and os.path.isdir(self.work_dir) else []

    def exec(self, args: List[str]):
        if not self.loaded:
            raise FFmpegError("FFmpeg engine is not loaded")
        _run([self.binary, "-y", "-hide_banner", "-loglevel", "error", *args], cwd=self.work_dir)

    def close(self):
        if self._owns_work_dir and self.work_dir:
            shutil.rmtree(self.work_dir, ignore_errors=True)
            self.work_dir = None
        self.loaded = False
