from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path
from typing import Any

from media_pipeline.config import get_settings

_FORBIDDEN_FLAGS = {
    "-filter_script",
    "-filter_script:v",
    "-filter_script:a",
    "-stats_file",
}


class FFmpegError(RuntimeError):
    pass


def _validate_args(argv: list[str]) -> None:
    for a in argv:
        if a in _FORBIDDEN_FLAGS:
            raise FFmpegError(f"Forbidden ffmpeg/ffprobe flag: {a}")


def _tail(s: str, n: int = 4000) -> str:
    s = str(s or "")
    if len(s) <= n:
        return s
    return s[-n:]


def binary_available(name: str) -> bool:
    p = Path(str(name))
    if p.is_file():
        return True
    return bool(shutil.which(str(p)))


def run_ffmpeg(
    argv: list[str],
    *,
    timeout_s: int | None = None,
    retries: int = 0,
) -> subprocess.CompletedProcess[str]:
    """
    Run an ffmpeg/ffprobe command, capturing output.

    Every failure mode (missing binary, non-zero exit, timeout) surfaces as FFmpegError.
    """
    _validate_args(argv)
    last_ex: Exception | None = None
    for attempt in range(int(retries) + 1):
        try:
            return subprocess.run(
                argv,
                check=True,
                capture_output=True,
                text=True,
                # Tags in media files are not guaranteed UTF-8.
                encoding="utf-8",
                errors="replace",
                timeout=timeout_s,
            )
        except subprocess.TimeoutExpired as ex:
            last_ex = ex
            if attempt >= int(retries):
                raise FFmpegError(f"{argv[0]} timed out after {timeout_s}s") from ex
        except subprocess.CalledProcessError as ex:
            last_ex = ex
            if attempt >= int(retries):
                raise FFmpegError(
                    f"{argv[0]} failed "
                    f"(exit={ex.returncode})\n"
                    f"argv={argv}\n"
                    f"stderr_tail={_tail(ex.stderr or '')}"
                ) from ex
        except OSError as ex:
            last_ex = ex
            if attempt >= int(retries):
                raise FFmpegError(f"{argv[0]} failed: {ex}") from ex
    raise FFmpegError(f"{argv[0]} failed: {last_ex} (argv={argv})")


def ffprobe_media_info(path: Path, *, timeout_s: int = 30) -> dict[str, Any]:
    """
    ffprobe metadata probe.

    Returns a dict:
      - format_name: str
      - duration_s: float
      - width: int (0 if unknown)
      - height: int (0 if unknown)
      - codec: str ("unknown" if no video stream)
      - bitrate: int (0 if unknown)
    """
    s = get_settings()
    argv = [
        str(s.ffprobe_bin),
        "-v",
        "quiet",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    proc = run_ffmpeg(argv, timeout_s=timeout_s)
    try:
        data = json.loads(proc.stdout) if proc.stdout else {}
    except ValueError as ex:
        raise FFmpegError(f"ffprobe returned invalid JSON: {ex}") from ex
    return parse_ffprobe_json(data)


def parse_ffprobe_json(data: Any) -> dict[str, Any]:
    fmt = data.get("format") if isinstance(data, dict) else {}
    streams = data.get("streams") if isinstance(data, dict) else []
    format_name = ""
    duration_s = 0.0
    bitrate = 0
    width = 0
    height = 0
    codec = "unknown"

    if isinstance(fmt, dict):
        format_name = str(fmt.get("format_name") or "").strip()
        try:
            duration_s = float(fmt.get("duration") or 0.0)
        except (TypeError, ValueError):
            duration_s = 0.0
        try:
            bitrate = int(fmt.get("bit_rate") or 0)
        except (TypeError, ValueError):
            bitrate = 0

    # Prefer the first video stream.
    if isinstance(streams, list):
        for st in streams:
            if not isinstance(st, dict):
                continue
            if str(st.get("codec_type") or "") != "video":
                continue
            try:
                width = int(st.get("width") or 0)
                height = int(st.get("height") or 0)
            except (TypeError, ValueError):
                width = 0
                height = 0
            codec = str(st.get("codec_name") or "unknown")
            break

    return {
        "format_name": format_name,
        "duration_s": float(duration_s),
        "width": int(width),
        "height": int(height),
        "codec": codec,
        "bitrate": int(bitrate),
    }


def extract_frame(
    *,
    src: Path,
    dst: Path,
    at: str = "00:00:01",
    width: int = 320,
    timeout_s: int = 60,
) -> Path:
    s = get_settings()
    dst.parent.mkdir(parents=True, exist_ok=True)
    argv = [
        str(s.ffmpeg_bin),
        "-y",
        "-ss",
        str(at),
        "-i",
        str(src),
        "-vframes",
        "1",
        "-vf",
        f"scale={int(width)}:-1",
        str(dst),
    ]
    run_ffmpeg(argv, timeout_s=timeout_s)
    if not dst.exists() or dst.stat().st_size == 0:
        raise FFmpegError(f"ffmpeg produced no frame at {at}")
    return dst
