"""
Configuration module for Episode Processor.
Loads presets from YAML and combines them with command line values into typed configuration.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml

from .duration import parse_cut, parse_duration
from .planner import DISABLED, Format, PartSpec


@dataclass
class DiscordConfig:
    """Discord webhook configuration."""
    webhook: str = ""  # Empty disables notifications
    ping: str = ""     # User ID mentioned on start/error/finish messages


@dataclass
class BucketConfig:
    """One S3 bucket and the key prefix outputs go under."""
    bucket: str
    prefix: str = ""


@dataclass
class UploadConfig:
    """S3 upload configuration."""
    private: BucketConfig
    public: BucketConfig
    options: Dict[str, Any] = field(default_factory=dict)  # boto3 client kwargs
    upload_raw: bool = True  # Upload the source recording to the private bucket


@dataclass
class ParallelConfig:
    """Concurrent ffmpeg processes per media type."""
    video: int = 1
    audio: int = 0  # 0 = share the video queue


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: str = ""  # Empty logs to console only
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass
class ProcessorConfig:
    """Fully resolved settings for one processing run."""
    source: str
    output_base: str
    formats: List[Format]
    cuts: List[Union[float, str]] = field(default_factory=list)
    start: Optional[float] = None
    end: Optional[float] = None
    parts: List[Optional[PartSpec]] = field(default_factory=list)
    parallel: ParallelConfig = field(default_factory=ParallelConfig)
    upload: Optional[UploadConfig] = None
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    hw_enc: Optional[str] = None  # None or "nvidia"
    part_encoding: List[str] = field(default_factory=list)
    force: bool = False
    work_dir: str = "."
    status_interval: float = 15.0
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def output_dir(self) -> Path:
        return Path(self.work_dir) / self.output_base

    @property
    def parts_dir(self) -> Path:
        return self.output_dir / "parts"


TRUE_WORDS = frozenset(("1", "true", "yes", "y", "on"))
FALSE_WORDS = frozenset(("0", "false", "no", "n", "off"))


def as_bool(value: Any, default: bool) -> bool:
    """Preset flag; yes/no words are accepted, anything unrecognised keeps the default."""
    if isinstance(value, str):
        word = value.strip().lower()
        if word in TRUE_WORDS or word in FALSE_WORDS:
            return word in TRUE_WORDS
        return default
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return default


def _as_number(value: Any, default, cast):
    # True/False are not numbers here
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return cast(value)
    if isinstance(value, str) and value.strip():
        try:
            return cast(float(value.strip().replace(",", ".")))
        except (ValueError, OverflowError):
            return default
    return default


def as_int(value: Any, default: int) -> int:
    """Preset count; decimal commas are accepted and fractions truncated."""
    return _as_number(value, default, int)


def as_float(value: Any, default: float) -> float:
    return _as_number(value, default, float)


def load_preset(preset_path: str) -> dict:
    """
    Load a preset from a YAML (or JSON) file.

    Raises:
        FileNotFoundError: If the preset doesn't exist.
        ValueError: If the preset isn't a mapping.
    """
    path = Path(preset_path)

    if not path.exists():
        raise FileNotFoundError(
            f"Preset file not found: {path}\n"
            f"Create one with: episode-processor create-preset {path.name}"
        )

    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Preset {path} must contain a mapping")
    return data


def parse_format(data: Any) -> Format:
    if not isinstance(data, dict):
        raise ValueError(f"Invalid format entry: {data!r}")

    media_type = data.get('type', 'video')
    if media_type not in ('video', 'audio'):
        raise ValueError(f"Invalid format type: {media_type!r}")

    return Format(
        type=media_type,
        prefix=str(data.get('prefix') or ''),
        suffix=str(data.get('suffix') or ''),
        encoding=tuple(str(flag) for flag in data.get('encoding') or ()),
    )


def parse_part_spec(data: Any) -> Optional[PartSpec]:
    """`false` disables a part, a mapping overrides prefix/suffix, anything else keeps defaults."""
    if data is False:
        return DISABLED
    if isinstance(data, dict):
        suffix = data.get('suffix')
        return PartSpec(
            prefix=str(data.get('prefix') or ''),
            suffix=None if suffix is None else str(suffix),
        )
    return None


def parse_upload(data: Any) -> Optional[UploadConfig]:
    if not data:
        return None

    for name in ('private', 'public'):
        if not isinstance(data.get(name), dict) or not data[name].get('bucket'):
            raise ValueError(f"Missing required field: upload.{name}.bucket")

    return UploadConfig(
        private=BucketConfig(bucket=str(data['private']['bucket']), prefix=str(data['private'].get('prefix') or '')),
        public=BucketConfig(bucket=str(data['public']['bucket']), prefix=str(data['public'].get('prefix') or '')),
        options=dict(data.get('options') or {}),
        upload_raw=as_bool(data.get('upload_raw'), True),
    )


def build_config(
    preset: dict,
    source: str,
    output_base: str,
    cuts: Sequence[Union[str, float]] = (),
    start: Optional[str] = None,
    end: Optional[str] = None,
    force: Optional[bool] = None,
    hw_enc: Optional[str] = None,
    work_dir: Optional[str] = None
) -> ProcessorConfig:
    """
    Combine a preset with command line values.

    Command line values win over preset values.

    Raises:
        ValueError: If required preset sections are missing or malformed.
        FormatError: If a timestamp can't be parsed.
    """
    formats_data = preset.get('formats')
    if not formats_data:
        raise ValueError("Missing output formats (missing preset?)")

    start = start if start is not None else preset.get('start')
    end = end if end is not None else preset.get('end')
    cuts = list(cuts) or list(preset.get('cuts') or [])

    parallel_data = preset.get('parallel') or {}
    discord_data = preset.get('discord') or {}
    logging_data = preset.get('logging') or {}

    hw_enc = hw_enc or preset.get('hw_enc') or None
    if hw_enc not in (None, 'nvidia'):
        raise ValueError(f"Unsupported hardware encoder: {hw_enc!r}")

    return ProcessorConfig(
        source=source,
        output_base=output_base,
        formats=[parse_format(item) for item in formats_data],
        cuts=[parse_cut(cut) for cut in cuts],
        start=parse_duration(start) if start not in (None, '') else None,
        end=parse_duration(end) if end not in (None, '') else None,
        parts=[parse_part_spec(item) for item in preset.get('parts') or []],
        parallel=ParallelConfig(
            video=max(1, as_int(parallel_data.get('video'), 1)),
            audio=max(0, as_int(parallel_data.get('audio'), 0)),
        ),
        upload=parse_upload(preset.get('upload')),
        discord=DiscordConfig(
            webhook=str(discord_data.get('webhook') or ''),
            ping=str(discord_data.get('ping') or ''),
        ),
        hw_enc=hw_enc,
        part_encoding=[str(flag) for flag in preset.get('part_encoding') or []],
        force=force if force is not None else as_bool(preset.get('force'), False),
        work_dir=work_dir or str(preset.get('work_dir') or '.'),
        status_interval=max(1.0, as_float(preset.get('status_interval'), 15.0)),
        logging=LoggingConfig(
            level=str(logging_data.get('level', 'INFO')),
            file=str(logging_data.get('file') or ''),
            max_size_mb=as_int(logging_data.get('max_size_mb'), 10),
            backup_count=as_int(logging_data.get('backup_count'), 5),
        ),
    )


EXAMPLE_PRESET = """# Episode Processor preset

discord:
  webhook: ""  # https://discord.com/api/webhooks/<id>/<token>, empty to disable
  ping: ""     # User ID to mention on start/error/finish

upload:
  options:  # Passed to boto3.client('s3')
    endpoint_url: https://ams3.digitaloceanspaces.com
    region_name: ams3
  private:
    bucket: my-private-bucket
    prefix: recordings
  public:
    bucket: my-public-bucket
    prefix: episodes
  upload_raw: true  # Upload the source recording too

parallel:
  video: 1  # Concurrent video encodes
  audio: 0  # Concurrent audio encodes, 0 = share the video slots

# hw_enc: nvidia

# One entry per part; false skips that part entirely
parts:
  - suffix: _preshow
  - suffix: ""
  - suffix: _postshow

formats:
  - type: video
  - type: audio

status_interval: 15  # Seconds between Discord status updates

logging:
  level: INFO  # DEBUG, INFO, WARNING, ERROR
  file: ""     # e.g. ./logs/episode-processor.log
  max_size_mb: 10
  backup_count: 5
"""


def create_example_preset(path: str) -> None:
    """Create an example preset file."""
    with open(path, 'w', encoding='utf-8') as f:
        f.write(EXAMPLE_PRESET)
