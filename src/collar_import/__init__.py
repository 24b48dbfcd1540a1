"""Public API for importing STL/GLB collar assets."""

from collar_import.adapter import ImportedMeshAdapter, decode_collar_asset, place_imported_collar
from collar_import.cache import ImportedMeshCache
from collar_import.contracts import (
    ImportedMeshData,
    MeshFormatError,
    MeshImportError,
    UnsupportedAccessorError,
    UnsupportedMeshFormatError,
)

__all__ = [
    "ImportedMeshAdapter",
    "ImportedMeshCache",
    "ImportedMeshData",
    "MeshFormatError",
    "MeshImportError",
    "UnsupportedAccessorError",
    "UnsupportedMeshFormatError",
    "decode_collar_asset",
    "place_imported_collar",
]
