"""Choose which collar builder (if any) feeds the renderer for a frame."""
import logging
from typing import Optional

from collar_import import ImportedMeshAdapter
from collar_mesh import build_collar_mesh
from geometry_primitives import Mesh
from knob_parameters import CollarParameters, CollarPreset, KnobParameters

logger = logging.getLogger(__name__)

_default_adapter: Optional[ImportedMeshAdapter] = None


def default_adapter() -> ImportedMeshAdapter:
    """Process-wide adapter so every caller shares one import cache."""
    global _default_adapter
    if _default_adapter is None:
        _default_adapter = ImportedMeshAdapter()
    return _default_adapter


def build_collar_for_preset(
    knob: KnobParameters,
    collar: CollarParameters,
    adapter: Optional[ImportedMeshAdapter] = None,
) -> Optional[Mesh]:
    if not collar.enabled or collar.preset is CollarPreset.NONE:
        return None
    if collar.preset is CollarPreset.PROCEDURAL:
        return build_collar_mesh(knob, collar)
    if collar.preset is CollarPreset.IMPORTED:
        return (adapter or default_adapter()).build(knob, collar)
    logger.warning("Unknown collar preset %r", collar.preset)
    return None
