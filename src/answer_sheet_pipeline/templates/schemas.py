"""Pydantic schemas for answer sheet templates, template matches and question slots."""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from answer_sheet_pipeline.regions.bbox_utils import scale_region
from answer_sheet_pipeline.regions.schemas import Region

DEFAULT_OPTIONS = ("A", "B", "C", "D", "E")


class PrimaryFormat(str, Enum):
    """Coarse layout class of an answer sheet."""

    BUBBLE_SHEET = "bubble_sheet"
    TEXT_BASED = "text_based"
    MIXED_FORMAT = "mixed_format"


class QuestionType(str, Enum):
    """Answer type of a single question."""

    MULTIPLE_CHOICE = "multiple_choice"
    TEXT = "text"
    ESSAY = "essay"


class BubbleGrid(BaseModel):
    """Geometry of a bubble grid: one row per question, one column per option."""

    model_config = ConfigDict(frozen=True)

    rows: int = Field(gt=0)
    columns: int = Field(gt=0)
    bubble_radius: float = Field(gt=0)
    horizontal_spacing: float = Field(gt=0)
    vertical_spacing: float = Field(gt=0)
    start_x: float
    start_y: float
    first_question: int = 1
    options: Tuple[str, ...] = DEFAULT_OPTIONS

    @model_validator(mode="after")
    def check_options_match_columns(self) -> "BubbleGrid":
        if len(self.options) != self.columns:
            raise ValueError(f"Bubble grid has {self.columns} columns but {len(self.options)} option labels.")
        return self

    def option_center(self, row: int, column: int) -> Tuple[float, float]:
        """Centre of the bubble at the given row and column."""
        return (
            self.start_x + column * self.horizontal_spacing,
            self.start_y + row * self.vertical_spacing,
        )

    def question_number(self, row: int) -> int:
        """Question number printed on the given row."""
        return self.first_question + row

    def centers(self) -> List[Tuple[float, float]]:
        """Every bubble centre in the grid, row by row."""
        return [self.option_center(row, column) for row in range(self.rows) for column in range(self.columns)]

    @property
    def area(self) -> Region:
        """Tight region around all bubbles of the grid."""
        last_x, last_y = self.option_center(self.rows - 1, self.columns - 1)
        return Region(
            left=self.start_x - self.bubble_radius,
            top=self.start_y - self.bubble_radius,
            width=last_x - self.start_x + 2 * self.bubble_radius,
            height=last_y - self.start_y + 2 * self.bubble_radius,
            label="bubble_grid",
        )

    def scaled(self, scale_x: float, scale_y: float) -> "BubbleGrid":
        """Returns the grid in image coordinates."""
        return self.model_copy(
            update={
                "bubble_radius": self.bubble_radius * min(scale_x, scale_y),
                "horizontal_spacing": self.horizontal_spacing * scale_x,
                "vertical_spacing": self.vertical_spacing * scale_y,
                "start_x": self.start_x * scale_x,
                "start_y": self.start_y * scale_y,
            }
        )


class TextField(BaseModel):
    """A free-text answer box."""

    model_config = ConfigDict(frozen=True)

    question_number: int
    question_type: QuestionType = QuestionType.TEXT
    box: Region


class ExpectedElement(BaseModel):
    """A printed element that must carry structure ink when the template fits."""

    model_config = ConfigDict(frozen=True)

    name: str
    box: Region
    required: bool = True
    min_ink_ratio: float = Field(default=0.01, ge=0.0, le=1.0)


class QuestionSlot(BaseModel):
    """Where and how to read one question on a matched sheet."""

    model_config = ConfigDict(frozen=True)

    question_number: int
    question_type: QuestionType
    answer_box: Region
    option_centers: Dict[str, Tuple[float, float]] = Field(default_factory=dict)
    bubble_radius: float = 0.0
    option_spacing: float = 0.0
    valid_options: Tuple[str, ...] = ()


class TemplateDefinition(BaseModel):
    """Named, immutable sheet layout in template reference coordinates."""

    model_config = ConfigDict(frozen=True)

    template_id: str = Field(min_length=1)
    name: str
    primary_format: PrimaryFormat
    page_width: int = Field(gt=0)
    page_height: int = Field(gt=0)
    header_region: Optional[Region] = None
    id_region: Optional[Region] = None
    bubble_grid: Optional[BubbleGrid] = None
    text_fields: Tuple[TextField, ...] = ()
    expected_elements: Tuple[ExpectedElement, ...] = ()
    valid_options: Tuple[str, ...] = DEFAULT_OPTIONS
    generic: bool = False

    def scaled_to(self, width: int, height: int) -> "TemplateDefinition":
        """Returns a copy of the template expressed in the pixel coordinates of an image.

        Args:
            width (int): Image width in pixels.
            height (int): Image height in pixels.

        Returns:
            TemplateDefinition: The scaled template; the original when the sizes already agree.
        """
        if width == self.page_width and height == self.page_height:
            return self

        scale_x = width / self.page_width
        scale_y = height / self.page_height
        return self.model_copy(
            update={
                "page_width": width,
                "page_height": height,
                "header_region": scale_region(self.header_region, scale_x, scale_y) if self.header_region else None,
                "id_region": scale_region(self.id_region, scale_x, scale_y) if self.id_region else None,
                "bubble_grid": self.bubble_grid.scaled(scale_x, scale_y) if self.bubble_grid else None,
                "text_fields": tuple(
                    field.model_copy(update={"box": scale_region(field.box, scale_x, scale_y)})
                    for field in self.text_fields
                ),
                "expected_elements": tuple(
                    element.model_copy(update={"box": scale_region(element.box, scale_x, scale_y)})
                    for element in self.expected_elements
                ),
            }
        )

    def question_slots(self, expected_count: Optional[int] = None) -> List[QuestionSlot]:
        """Lists the questions this template defines, ordered by question number.

        Args:
            expected_count (Optional[int]): When given, only the first expected_count questions are returned.

        Returns:
            List[QuestionSlot]: One slot per question.
        """
        slots: List[QuestionSlot] = []
        grid = self.bubble_grid
        if grid is not None:
            for row in range(grid.rows):
                centers = {option: grid.option_center(row, column) for column, option in enumerate(grid.options)}
                first_x, y = centers[grid.options[0]]
                last_x, _ = centers[grid.options[-1]]
                slots.append(
                    QuestionSlot(
                        question_number=grid.question_number(row),
                        question_type=QuestionType.MULTIPLE_CHOICE,
                        answer_box=Region(
                            left=first_x - grid.bubble_radius,
                            top=y - grid.bubble_radius,
                            width=last_x - first_x + 2 * grid.bubble_radius,
                            height=2 * grid.bubble_radius,
                        ),
                        option_centers=centers,
                        bubble_radius=grid.bubble_radius,
                        option_spacing=grid.horizontal_spacing,
                        valid_options=self.valid_options,
                    )
                )
        for text_field in self.text_fields:
            slots.append(
                QuestionSlot(
                    question_number=text_field.question_number,
                    question_type=text_field.question_type,
                    answer_box=text_field.box,
                )
            )

        slots.sort(key=lambda slot: slot.question_number)
        if expected_count is not None:
            slots = slots[:expected_count]
        return slots


class DetectedElement(BaseModel):
    """Outcome of looking for one expected element on the image."""

    model_config = ConfigDict(frozen=True)

    name: str
    box: Region
    found: bool
    ink_ratio: float = Field(ge=0.0, le=1.0)
    required: bool = True


class TemplateMatch(BaseModel):
    """Result of template recognition for one document."""

    model_config = ConfigDict(frozen=True)

    template_id: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    primary_format: PrimaryFormat
    detected_elements: Tuple[DetectedElement, ...] = ()
    template: Optional[TemplateDefinition] = None

    @computed_field
    @property
    def matched(self) -> bool:
        """True when a registered template met the minimum confidence."""
        return self.template_id is not None
