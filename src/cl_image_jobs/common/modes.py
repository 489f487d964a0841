"""Generation mode catalog.

Modes bundle a prompt template with the size, aspect ratio and strength
bounds a request is validated against. The default catalog ships as
`modes.json` next to this module.
"""

import json
from collections.abc import Iterator, Sequence
from importlib.resources import files
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import ValidationError

DEFAULT_MODE_ID = "add-person"


class Mode(BaseModel):
    id: str
    name: str
    description: str = ""
    category: Literal["people", "portrait", "style"] = "style"
    prompt_template: str = Field(description="Template containing a {userPrompt} placeholder")
    default_aspect: str = "1:1"
    recommended_size: str = "1024x1024"
    strength_default: float = 0.6
    strength_min: float = 0.0
    strength_max: float = 1.0
    preserve_faces: bool = False

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_strength_bounds(self) -> "Mode":
        if not self.strength_min <= self.strength_default <= self.strength_max:
            raise ValueError(
                f"Mode '{self.id}': strength_default must lie within "
                + f"[{self.strength_min}, {self.strength_max}]"
            )
        if "{userPrompt}" not in self.prompt_template:
            raise ValueError(f"Mode '{self.id}': prompt_template lacks {{userPrompt}}")
        return self

    def render_prompt(self, user_prompt: str) -> str:
        return self.prompt_template.replace("{userPrompt}", user_prompt.strip()).strip()


class ModeCatalog:
    """Ordered, id-indexed collection of generation modes."""

    def __init__(self, modes: Sequence[Mode]):
        self._modes: dict[str, Mode] = {}
        for mode in modes:
            if mode.id in self._modes:
                raise ValueError(f"Duplicate mode id: {mode.id}")
            self._modes[mode.id] = mode

    @classmethod
    def load_default(cls) -> "ModeCatalog":
        raw = files(__package__).joinpath("modes.json").read_text(encoding="utf-8")
        return cls([Mode.model_validate(m) for m in json.loads(raw)])

    def __iter__(self) -> Iterator[Mode]:
        return iter(self._modes.values())

    def __len__(self) -> int:
        return len(self._modes)

    def __contains__(self, mode_id: object) -> bool:
        return mode_id in self._modes

    def get(self, mode_id: str) -> Mode:
        try:
            return self._modes[mode_id]
        except KeyError:
            raise ValidationError(f"Unknown mode: {mode_id}", field="mode") from None
