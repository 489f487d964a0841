"""Model adapters - one ModelAdapter per image generation provider."""

from .base import Capability, ModelAdapter
from .fal import FalAdapter
from .horde import HordeAdapter
from .local_stub import LocalStubAdapter
from .registry import AdapterRegistry, ModelInfo

__all__ = [
    "AdapterRegistry",
    "Capability",
    "FalAdapter",
    "HordeAdapter",
    "LocalStubAdapter",
    "ModelAdapter",
    "ModelInfo",
]
