"""Console front-ends for the Marker Editor."""

from .overview import MarkerOverview

__all__ = ["MarkerOverview"]
