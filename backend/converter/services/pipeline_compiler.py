"""Compiles user conversion settings into an engine pipeline description."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
from converter.formats import DEFAULT_TABLES, FormatTables
from converter.models.schemas import ConversionSettings

logger = logging.getLogger(__name__)

VIDEO_ROBOT = "/video/encode"
AUDIO_ROBOT = "/audio/encode"

UNCHANGED = {"", "no_change", "original"}

ROTATE_FILTERS = {
    "90": "transpose=1",
    "180": "transpose=2,transpose=2",
    "270": "transpose=2",
}

FLIP_FILTERS = {
    "horizontal": "hflip",
    "hflip": "hflip",
    "vertical": "vflip",
    "vflip": "vflip",
}

Dimension = Union[int, str]


@dataclass(frozen=True)
class PipelineSpec:
    """Engine-facing description of one encode step."""

    output_format: str
    robot: str
    preset: Optional[str] = None
    width: Optional[Dimension] = None
    height: Optional[Dimension] = None
    animated: bool = False
    ffmpeg: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_audio(self) -> bool:
        return self.robot == AUDIO_ROBOT

    def to_step(self, ffmpeg_stack: str) -> Dict[str, Any]:
        """
        Render the spec as an engine step definition.

        Args:
            ffmpeg_stack: Engine ffmpeg stack version

        Returns:
            Step dictionary ready to be placed under ``steps``
        """
        step: Dict[str, Any] = {
            "robot": self.robot,
            "use": ":original",
            "ffmpeg_stack": ffmpeg_stack,
            "result": True,
        }
        if self.width is not None and self.height is not None:
            step["width"] = self.width
            step["height"] = self.height
        if self.animated:
            step["animated"] = True
        if self.preset:
            step["preset"] = self.preset
        if self.ffmpeg:
            step["ffmpeg"] = dict(self.ffmpeg)
        return step


def _number(value: str) -> Dimension:
    # Garbage passes through untouched
    return int(value) if value.isdigit() else value


def _kbps(value: str) -> str:
    return f"{value}k" if value.isdigit() else value


def _is_zero_offset(value: str) -> bool:
    try:
        return all(float(part) == 0 for part in value.split(":"))
    except ValueError:
        return False


def _resolution(settings: ConversionSettings) -> Tuple[Optional[Dimension], Optional[Dimension]]:
    """Resolve width and height together; either both are set or neither."""
    resolution = settings.resolution.strip().lower()
    if resolution in UNCHANGED:
        return None, None

    if resolution == "custom":
        width = settings.custom_width.strip()
        height = settings.custom_height.strip()
        if width and height:
            return _number(width), _number(height)
        return None, None

    parts = resolution.split("x")
    if len(parts) == 2 and parts[0].isdigit() and parts[1].isdigit():
        return int(parts[0]), int(parts[1])
    return None, None


def _geometry_filters(settings: ConversionSettings) -> List[str]:
    filters = []

    crop_width = settings.crop_width.strip()
    crop_height = settings.crop_height.strip()
    if crop_width and crop_height:
        crop_x = settings.crop_x.strip() or "0"
        crop_y = settings.crop_y.strip() or "0"
        filters.append(f"crop={crop_width}:{crop_height}:{crop_x}:{crop_y}")

    rotate = ROTATE_FILTERS.get(settings.rotate.strip())
    if rotate:
        filters.append(rotate)

    flip = FLIP_FILTERS.get(settings.flip.strip().lower())
    if flip:
        filters.append(flip)

    return filters


class PipelineCompiler:
    """
    Turns ``(output_format, settings)`` into a PipelineSpec.

    The compiler never raises: unknown formats get no codec defaults,
    unrecognized settings are ignored and malformed numbers are passed
    through for the engine to reject.
    """

    def __init__(self, tables: FormatTables = DEFAULT_TABLES):
        self.tables = tables

    def compile(self, output_format: str, settings: Any = None) -> PipelineSpec:
        fmt = (output_format or "").strip().lower().lstrip(".")
        s = ConversionSettings.from_raw(settings)

        is_audio = self.tables.is_audio(fmt)
        is_gif = fmt == "gif"
        remove_audio = s.remove_audio or s.audio_codec.strip().lower() == "none"
        keeps_audio = not is_gif and not remove_audio

        ffmpeg: Dict[str, Any] = {}
        width = height = None

        # Format defaults
        defaults = self.tables.codec_defaults.get(fmt, {})
        if "vcodec" in defaults and not is_audio:
            ffmpeg["vcodec"] = defaults["vcodec"]
        if "acodec" in defaults:
            ffmpeg["acodec"] = defaults["acodec"]

        if is_gif:
            ffmpeg.pop("vcodec", None)
            ffmpeg.pop("acodec", None)
            ffmpeg["vf"] = self.tables.gif_filter

        # Codec overrides
        video_codec = s.video_codec.strip()
        if not is_audio and not is_gif and video_codec and video_codec != "auto":
            ffmpeg["vcodec"] = video_codec

        audio_codec = s.audio_codec.strip()
        if keeps_audio and audio_codec and audio_codec not in ("auto", "none"):
            ffmpeg["acodec"] = audio_codec

        if not is_audio:
            width, height = _resolution(s)

            frame_rate = s.frame_rate.strip()
            if frame_rate not in UNCHANGED:
                ffmpeg["r"] = frame_rate

            # GIF keeps its palette chain untouched; a stream copy cannot be filtered
            if not is_gif and ffmpeg.get("vcodec") != "copy":
                filters = _geometry_filters(s)
                if filters:
                    ffmpeg["vf"] = ",".join(filters)

        # Trim window: "to" is an end time, not a duration
        trim_start = s.trim_start.strip()
        if trim_start and not _is_zero_offset(trim_start):
            ffmpeg["ss"] = trim_start
        trim_end = s.trim_end.strip()
        if trim_end:
            ffmpeg["to"] = trim_end

        # Bitrate caps
        video_bitrate = s.video_bitrate.strip()
        if video_bitrate and not is_audio and not is_gif:
            ffmpeg["b:v"] = _kbps(video_bitrate)
        audio_bitrate = s.audio_bitrate.strip()
        if audio_bitrate and keeps_audio:
            ffmpeg["b:a"] = _kbps(audio_bitrate)

        if remove_audio:
            ffmpeg.pop("acodec", None)
            if not is_gif:
                ffmpeg["an"] = 1

        if keeps_audio and s.volume != 100 and ffmpeg.get("acodec") != "copy":
            ffmpeg["af"] = f"volume={s.volume / 100:.2f}"

        container = self.tables.container_overrides.get(fmt)
        if container:
            ffmpeg["f"] = container

        spec = PipelineSpec(
            output_format=fmt,
            robot=AUDIO_ROBOT if is_audio else VIDEO_ROBOT,
            preset=self.tables.presets.get(fmt),
            width=width,
            height=height,
            animated=is_gif,
            ffmpeg=ffmpeg,
        )
        logger.debug(f"Compiled pipeline for {fmt}: {spec}")
        return spec


default_compiler = PipelineCompiler()


def compile_pipeline(output_format: str, settings: Any = None) -> PipelineSpec:
    """Compile with the process-wide default format tables."""
    return default_compiler.compile(output_format, settings)
