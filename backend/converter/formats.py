"""Static format lookup tables used by the pipeline compiler."""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


GIF_PALETTE_FILTER = (
    "fps=10,scale=480:-1:flags=lanczos,split[s0][s1];[s0]palettegen[p];[s1][p]paletteuse"
)


@dataclass(frozen=True)
class FormatTables:
    """Immutable per-format defaults consumed by the compiler."""

    audio_formats: frozenset
    codec_defaults: Mapping[str, Mapping[str, str]]
    container_overrides: Mapping[str, str]
    presets: Mapping[str, str]
    mime_types: Mapping[str, str]
    gif_filter: str = GIF_PALETTE_FILTER
    supported_formats: frozenset = field(default=frozenset())

    def is_audio(self, fmt: str) -> bool:
        return fmt in self.audio_formats

    def mime_type(self, fmt: str) -> str:
        return self.mime_types.get(fmt, "application/octet-stream")

    def is_supported(self, fmt: str) -> bool:
        return fmt in self.supported_formats


def _freeze(table: dict) -> Mapping:
    return MappingProxyType(
        {key: MappingProxyType(dict(value)) if isinstance(value, dict) else value
         for key, value in table.items()}
    )


def build_default_tables() -> FormatTables:
    """Build the process-wide format tables."""
    h264_aac = {"vcodec": "libx264", "acodec": "aac"}

    codec_defaults = {
        "mp4": h264_aac,
        "m4v": h264_aac,
        "mov": h264_aac,
        "mkv": h264_aac,
        "flv": h264_aac,
        "webm": {"vcodec": "libvpx-vp9", "acodec": "libopus"},
        "ogv": {"vcodec": "libtheora", "acodec": "libvorbis"},
        "avi": {"vcodec": "libxvid", "acodec": "libmp3lame"},
        "wmv": {"vcodec": "wmv2", "acodec": "wmav2"},
        # Audio-only
        "mp3": {"acodec": "libmp3lame"},
        "aac": {"acodec": "aac"},
        "m4a": {"acodec": "aac"},
        "ogg": {"acodec": "libvorbis"},
        "opus": {"acodec": "libopus"},
        "flac": {"acodec": "flac"},
        "wav": {"acodec": "pcm_s16le"},
        "wma": {"acodec": "wmav2"},
    }

    # On-disk container differs from what the extension implies
    container_overrides = {
        "mov": "mov",
        "mkv": "matroska",
        "avi": "avi",
        "ogv": "ogg",
        "ts": "mpegts",
        "m2ts": "mpegts",
        "mts": "mpegts",
        "mpg": "mpeg",
        "mpeg": "mpeg",
        "m4v": "mp4",
    }

    presets = {
        "mp4": "ipad",
        "m4v": "ipad",
        "mov": "ipad",
        "mkv": "ipad",
        "avi": "ipad",
        "webm": "webm",
        "ogv": "webm",
        "flv": "flash",
        "wmv": "wmv",
        "gif": "gif",
        "3gp": "android-low",
        "3g2": "android-low",
    }

    mime_types = {
        "mp4": "video/mp4",
        "webm": "video/webm",
        "mkv": "video/x-matroska",
        "mov": "video/quicktime",
        "avi": "video/x-msvideo",
        "flv": "video/x-flv",
        "wmv": "video/x-ms-wmv",
        "ogv": "video/ogg",
        "ts": "video/mp2t",
        "m2ts": "video/mp2t",
        "mts": "video/mp2t",
        "m4v": "video/x-m4v",
        "mpg": "video/mpeg",
        "mpeg": "video/mpeg",
        "3gp": "video/3gpp",
        "3g2": "video/3gpp2",
        "mxf": "application/mxf",
        "gif": "image/gif",
        "mp3": "audio/mpeg",
        "aac": "audio/aac",
        "wav": "audio/wav",
        "ogg": "audio/ogg",
        "m4a": "audio/mp4",
        "opus": "audio/opus",
        "flac": "audio/flac",
        "wma": "audio/x-ms-wma",
    }

    return FormatTables(
        audio_formats=frozenset({"mp3", "aac", "wav", "ogg", "m4a", "opus", "flac", "wma"}),
        codec_defaults=_freeze(codec_defaults),
        container_overrides=MappingProxyType(container_overrides),
        presets=MappingProxyType(presets),
        mime_types=MappingProxyType(mime_types),
        supported_formats=frozenset(mime_types),
    )


DEFAULT_TABLES = build_default_tables()
