from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Agent roles of the generation pipeline, in run order."""

    PAPA = "papa"
    TWINS = "twins"
    MAMA = "mama"
    WRITER = "writer"
    AUDITOR = "auditor"

    @property
    def label(self) -> str:
        return self.value.capitalize()


PIPELINE_ORDER: tuple[Role, ...] = (Role.PAPA, Role.TWINS, Role.MAMA, Role.WRITER, Role.AUDITOR)
