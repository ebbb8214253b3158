"""
Run context shared by every task of one processing run.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .planner import CutPlan, Format, Part


@dataclass
class UploadedFile:
    """Where one file ended up."""
    name: str
    location: Optional[str] = None

    def to_dict(self) -> dict:
        return {'name': self.name, 'location': self.location}


@dataclass
class PartUploads:
    """Uploads belonging to one part: the cut itself and its published formats."""
    part: Part
    location: Optional[str] = None
    outputs: List[UploadedFile] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'index': self.part.index,
            'filename': self.part.filename,
            'start': self.part.start,
            'end': self.part.end,
            'location': self.location,
            'outputs': [output.to_dict() for output in self.outputs],
        }


@dataclass
class UploadLedger:
    """Record of every uploaded file for the final report."""
    raw: UploadedFile
    parts: List[PartUploads]

    @classmethod
    def for_plan(cls, plan: CutPlan, formats: List[Format]) -> 'UploadLedger':
        return cls(
            raw=UploadedFile(name=""),
            parts=[
                PartUploads(
                    part=part,
                    outputs=[UploadedFile(name=output_format.filename(part.filename)) for output_format in formats],
                )
                for part in plan.parts
            ],
        )

    def for_part(self, part: Part) -> PartUploads:
        for entry in self.parts:
            if entry.part.index == part.index:
                return entry
        raise KeyError(f"No uploads entry for part {part.index}")

    def to_dict(self) -> dict:
        return {
            'raw': self.raw.to_dict(),
            'parts': [entry.to_dict() for entry in self.parts],
        }


@dataclass
class RunContext:
    """
    Values produced by earlier stages and read by later ones.

    Each field can be set once (fields left as None at construction can be
    filled in later); setting it again raises RuntimeError.
    """
    uploading: bool = False
    upload_raw: bool = False
    probe: Optional[dict] = None
    plan: Optional[CutPlan] = None
    summary: Optional[str] = None
    uploads: Optional[UploadLedger] = None

    def __setattr__(self, name: str, value) -> None:
        if self.__dict__.get(name) is not None:
            raise RuntimeError(f"Run context field {name!r} is already set")
        super().__setattr__(name, value)
