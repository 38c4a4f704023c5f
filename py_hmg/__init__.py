"""
py-hmg: multi-level terrain grid generation with POIs, roads and ramps.
"""

from .core import generate_terrain, PipelineOptions, TerrainPipeline

__version__ = "0.1.0"

__all__ = ["generate_terrain", "PipelineOptions", "TerrainPipeline", "__version__"]
