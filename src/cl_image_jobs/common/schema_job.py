"""Request parameter schemas and their semantic validation.

Pydantic only checks shapes here. Whether a request is acceptable (non-empty
prompt, known mode, strength within the mode's bounds, edit inputs present)
is decided by `validate_generation_params` / `validate_edit_params`, and the
length of the templated prompt by `apply_mode_prompt`. All of them raise the
orchestration `ValidationError` so that no job is ever created for a rejected
request.
"""

import re
from typing import TypeVar

from pydantic import BaseModel, Field

from .errors import ValidationError
from .modes import DEFAULT_MODE_ID, ModeCatalog

_SIZE_RE = re.compile(r"^(\d{2,5})x(\d{2,5})$")
_ASPECT_RE = re.compile(r"^(\d{1,3}):(\d{1,3})$")

MAX_PROMPT_LENGTH = 2000

T = TypeVar("T", bound="GenerationParams")


class GenerationParams(BaseModel):
    prompt: str = Field("", description="What to generate (required, non-empty)")
    negative_prompt: str | None = None
    mode: str = Field(DEFAULT_MODE_ID, description="Mode id from the mode catalog")
    size: str | None = Field(None, description="Target size as WxH, e.g. 1024x1024")
    aspect_ratio: str | None = Field(None, description="Aspect ratio as W:H, e.g. 3:4")
    strength: float | None = None
    provider: str | None = Field(None, description="Provider override; falls back when unconfigured")

    def dimensions(self) -> tuple[int, int]:
        """Parsed (width, height); only valid after validation."""
        match = _SIZE_RE.match(self.size or "")
        if match is None:
            raise ValidationError(f"Invalid size: {self.size!r}", field="size")
        return int(match.group(1)), int(match.group(2))


class EditParams(GenerationParams):
    image_url: str | None = Field(None, description="Reference to the source image")
    mask_url: str | None = Field(None, description="Reference to the edit mask")


def validate_generation_params(params: T, modes: ModeCatalog) -> T:
    """Validate and complete params from the selected mode's defaults.

    Returns:
        A copy with size, aspect_ratio and strength filled in.

    Raises:
        ValidationError: on the first problem found.
    """
    prompt = params.prompt.strip()
    if not prompt:
        raise ValidationError("Prompt is required", field="prompt")
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"Prompt exceeds {MAX_PROMPT_LENGTH} characters", field="prompt"
        )

    mode = modes.get(params.mode)

    size = params.size or mode.recommended_size
    match = _SIZE_RE.match(size)
    if match is None:
        raise ValidationError(f"Invalid size: {size!r} (expected WxH)", field="size")
    width, height = int(match.group(1)), int(match.group(2))
    if not (64 <= width <= 4096 and 64 <= height <= 4096):
        raise ValidationError(f"Size out of range: {size}", field="size")

    aspect_ratio = params.aspect_ratio or mode.default_aspect
    aspect = _ASPECT_RE.match(aspect_ratio)
    if aspect is None or int(aspect.group(1)) == 0 or int(aspect.group(2)) == 0:
        raise ValidationError(
            f"Invalid aspect ratio: {aspect_ratio!r} (expected W:H)", field="aspect_ratio"
        )

    strength = mode.strength_default if params.strength is None else params.strength
    if not mode.strength_min <= strength <= mode.strength_max:
        raise ValidationError(
            f"Strength {strength} outside [{mode.strength_min}, {mode.strength_max}] "
            + f"for mode '{mode.id}'",
            field="strength",
        )

    return params.model_copy(
        update={
            "prompt": prompt,
            "size": size,
            "aspect_ratio": aspect_ratio,
            "strength": strength,
        }
    )


def validate_edit_params(params: EditParams, modes: ModeCatalog) -> EditParams:
    """Editing needs a source image, a mask and a prompt."""
    if not (params.image_url or "").strip():
        raise ValidationError("Source image is required for editing", field="image_url")
    if not (params.mask_url or "").strip():
        raise ValidationError("Mask is required for editing", field="mask_url")
    return validate_generation_params(params, modes)


def apply_mode_prompt(params: T, modes: ModeCatalog) -> T:
    """Render the mode's prompt template around the validated user prompt.

    Raises:
        ValidationError: the rendered prompt exceeds MAX_PROMPT_LENGTH.
    """
    prompt = modes.get(params.mode).render_prompt(params.prompt)
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"Prompt exceeds {MAX_PROMPT_LENGTH} characters once the '{params.mode}' template is applied",
            field="prompt",
        )
    return params.model_copy(update={"prompt": prompt})
