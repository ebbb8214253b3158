"""
ffmpeg helpers for Episode Processor.
Builds encoding argument lists and wraps ffprobe / version checks.
"""

import asyncio
import json
from typing import List, Optional, Sequence

from .errors import EncodeError, ToolNotFoundError
from .logger import get_logger
from .planner import Format, Part


_logger = get_logger('ffmpeg')


def _seconds(value: float) -> str:
    return f"{value:.3f}"


def hw_acceleration_flags(hw_enc: Optional[str]) -> List[str]:
    if hw_enc == 'nvidia':
        return ['-hwaccel', 'cuda', '-hwaccel_output_format', 'cuda']
    return ['-hwaccel', 'auto']


def part_encoding_args(
    part: Part,
    source: str,
    output: str,
    hw_enc: Optional[str] = None,
    extra: Sequence[str] = ()
) -> List[str]:
    """Arguments to cut one part out of the source."""
    return [
        '-hide_banner',
        *hw_acceleration_flags(hw_enc),
        # Seek input
        '-ss', _seconds(part.start),
        '-i', source,
        # Length
        '-to', _seconds(part.duration),
        # Video
        '-c:v', 'h264_nvenc' if hw_enc == 'nvidia' else 'libx264',
        '-b:v', '2500k',
        '-maxrate:v', '3500k',
        '-bufsize:v', '8M',
        # Audio
        '-c:a', 'aac',
        # Container
        '-movflags', '+faststart',
        *extra,
        output,
    ]


def output_encoding_args(
    output_format: Format,
    input_file: str,
    output_file: str,
    hw_enc: Optional[str] = None
) -> List[str]:
    """Arguments to render a published format from an encoded part."""
    hw_flags: List[str] = []
    container_flags: List[str] = []

    if output_format.type == 'audio':
        video_flags = ['-vn']
        audio_flags = ['-c:a', 'libmp3lame', '-q:a', '7']
    else:
        hw_flags = hw_acceleration_flags(hw_enc)
        audio_flags = ['-c:a', 'aac', '-b:a', '160k']
        container_flags = ['-movflags', '+faststart']
        bandwidth = ['-b:v', '1M', '-maxrate:v', '2M', '-bufsize:v', '4M']

        if hw_enc == 'nvidia':
            video_flags = [
                '-vf', 'scale_cuda=1280:720',
                '-c:v', 'h264_nvenc',
                *bandwidth,
                '-profile:v', 'high',
                '-level:v', '4.1',
            ]
        else:
            video_flags = [
                '-vf', 'scale=1280:720',
                '-c:v', 'libx264',
                *bandwidth,
                '-pix_fmt', 'yuv420p',
                '-preset', 'slow',
                '-profile:v', 'high',
                '-level:v', '4.1',
            ]

    return [
        '-hide_banner',
        *hw_flags,
        '-i', input_file,
        *video_flags,
        *audio_flags,
        *container_flags,
        *output_format.encoding,
        output_file,
    ]


async def _exec(executable: str, *args: str) -> asyncio.subprocess.Process:
    try:
        return await asyncio.create_subprocess_exec(
            executable, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise ToolNotFoundError(f"Couldn't execute {executable}: {e}") from e


async def tool_version(executable: str) -> str:
    """
    Check an external tool is installed.

    Returns:
        Output of `<executable> -version`.

    Raises:
        ToolNotFoundError: Tool missing or failing.
    """
    process = await _exec(executable, '-version')
    stdout, stderr = await process.communicate()

    if process.returncode != 0:
        raise ToolNotFoundError(
            f"{executable} -version exit with {process.returncode}: "
            f"{stderr.decode('utf-8', errors='ignore')[:200]}"
        )
    return stdout.decode('utf-8', errors='ignore')


async def probe_source(file_path: str, executable: str = 'ffprobe') -> dict:
    """
    Run ffprobe on the source.

    Returns:
        Parsed ffprobe JSON (with "format" section).
    """
    process = await _exec(
        executable,
        '-hide_banner',
        '-print_format', 'json',
        '-show_format',
        file_path
    )
    stdout, stderr = await process.communicate()

    if process.returncode != 0:
        raise EncodeError(process.returncode, stderr.decode('utf-8', errors='ignore'), executable)

    data = json.loads(stdout.decode())
    _logger.debug(f"ffprobe format: {data.get('format', {})}")
    return data


def probe_duration(probe: dict) -> float:
    """Source duration in seconds from ffprobe output."""
    return float(probe['format']['duration'])
