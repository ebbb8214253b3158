"""
Cut planner for Episode Processor.
Turns cut points, skip markers and per-part settings into the list of parts to encode.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

from .duration import SKIP, format_duration
from .errors import InvalidPlanError


@dataclass(frozen=True)
class PartSpec:
    """Per-part naming overrides. A disabled PartSpec consumes a cut but emits no part."""
    prefix: str = ""
    suffix: Optional[str] = None
    enabled: bool = True

    def filename(self, index: int, output_base: str) -> str:
        suffix = self.suffix if self.suffix is not None else f"_{index + 1}"
        return f"{self.prefix}{output_base}{suffix}"


DISABLED = PartSpec(enabled=False)


@dataclass(frozen=True)
class Part:
    """A time-bounded segment of the source recording."""
    index: int
    start: float
    end: float
    filename: str

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class Format:
    """Output rendition derived from every part."""
    type: str = "video"
    prefix: str = ""
    suffix: str = ""
    encoding: Tuple[str, ...] = ()

    @property
    def extension(self) -> str:
        return "mp3" if self.type == "audio" else "mp4"

    def filename(self, base_filename: str) -> str:
        return f"{self.prefix}{base_filename}{self.suffix}.{self.extension}"


@dataclass(frozen=True)
class CutPlan:
    """Result of planning: ordered parts plus the bounds they were cut from."""
    parts: Tuple[Part, ...]
    start: float
    end: float
    source_duration: float
    skipped: Tuple[Tuple[float, float], ...] = field(default=())

    def summary(self) -> str:
        """One line per part with start, end, duration and filename."""
        return "\n".join(
            f"Part {number}: {format_duration(part.start)} - {format_duration(part.end)} "
            f"(duration: {format_duration(part.duration)})  {part.filename}"
            for number, part in enumerate(self.parts, start=1)
        )

    def validate(self) -> None:
        """
        Check part bounds.

        Raises:
            InvalidPlanError: A part ends before it starts, or the last part
                ends after the source.
        """
        for part in self.parts:
            if part.end < part.start:
                raise InvalidPlanError(
                    f"Negative duration: {format_duration(part.start)} - {format_duration(part.end)}",
                    (part.start, part.end),
                )

        if self.parts and self.parts[-1].end > self.source_duration:
            last = self.parts[-1]
            raise InvalidPlanError(
                f"Last part end {format_duration(last.end)} is after source end "
                f"{format_duration(self.source_duration)}.",
                (last.start, last.end),
            )


def _spec_for(part_specs: Sequence[Optional[PartSpec]], index: int) -> PartSpec:
    if index < len(part_specs) and part_specs[index] is not None:
        return part_specs[index]
    return PartSpec()


def plan_parts(
    source_duration: float,
    cuts: Sequence[Union[float, str]],
    part_specs: Sequence[Optional[PartSpec]] = (),
    output_base: str = "",
    start: Optional[float] = None,
    end: Optional[float] = None,
    validate: bool = True
) -> CutPlan:
    """
    Plan the parts cut from a source recording.

    Args:
        source_duration: Source length in seconds.
        cuts: Cut points in seconds, in order, possibly mixed with the skip
            marker. A skip drops the interval up to the next cut point.
        part_specs: Settings per output part number (None = defaults).
        output_base: Base used to build part filenames.
        start: Start of the first part (default 0).
        end: End of the last part (default source duration).
        validate: Run CutPlan.validate() before returning.

    Returns:
        CutPlan with the emitted parts.
    """
    start = 0.0 if start is None else start
    end = source_duration if end is None else end

    parts: List[Part] = []
    skipped: List[Tuple[float, float]] = []
    part_start = start
    part_i = 0
    skip_next = False

    for cut in cuts:
        if cut == SKIP:
            skip_next = True
            continue

        if skip_next:
            skip_next = False
            skipped.append((part_start, cut))
            part_start = cut
            continue

        spec = _spec_for(part_specs, part_i)
        if spec.enabled:
            parts.append(Part(part_i, part_start, cut, spec.filename(part_i, output_base)))
        part_start = cut
        part_i += 1

    spec = _spec_for(part_specs, part_i)
    if spec.enabled:
        parts.append(Part(part_i, part_start, end, spec.filename(part_i, output_base)))

    plan = CutPlan(
        parts=tuple(parts),
        start=start,
        end=end,
        source_duration=source_duration,
        skipped=tuple(skipped),
    )
    if validate:
        plan.validate()
    return plan
