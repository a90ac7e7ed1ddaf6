"""Pydantic schemas for pixel regions and the per-document processing region set."""

from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Region(BaseModel):
    """Immutable axis-aligned pixel rectangle with an attached confidence."""

    model_config = ConfigDict(frozen=True)

    left: float
    top: float
    width: float = Field(ge=0)
    height: float = Field(ge=0)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    label: str = ""

    @computed_field
    @property
    def right(self) -> float:
        """Calculates the right edge of the region.

        Returns:
            float: The x-coordinate of the right edge.
        """
        return self.left + self.width

    @computed_field
    @property
    def bottom(self) -> float:
        """Calculates the bottom edge of the region.

        Returns:
            float: The y-coordinate of the bottom edge.
        """
        return self.top + self.height

    @property
    def center(self) -> Tuple[float, float]:
        """Centre point of the region."""
        return (self.left + self.width / 2, self.top + self.height / 2)

    @property
    def area(self) -> float:
        """Area of the region in square pixels."""
        return self.width * self.height

    def contains_point(self, x: float, y: float) -> bool:
        """Returns True if the point lies inside the region (edges inclusive)."""
        return self.left <= x <= self.right and self.top <= y <= self.bottom

    def overlaps(self, other: "Region") -> bool:
        """Returns True if the two regions share a positive-area intersection."""
        return (
            self.left < other.right and other.left < self.right and self.top < other.bottom and other.top < self.bottom
        )


class ProcessingRegion(BaseModel):
    """Include/exclude regions derived for one document.

    Exclusions are soft: marks overlapping them are penalized downstream, never dropped here.
    """

    model_config = ConfigDict(frozen=True)

    include: Tuple[Region, ...] = ()
    exclude: Tuple[Region, ...] = ()
    image_width: int = Field(gt=0)
    image_height: int = Field(gt=0)

    @property
    def noise_regions(self) -> Tuple[Region, ...]:
        """Exclusion regions that came from handwriting noise rather than fixed margins."""
        return tuple(region for region in self.exclude if region.label == "noise")
