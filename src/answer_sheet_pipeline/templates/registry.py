"""Read-only registry of answer sheet templates, with the built-in layouts."""

import logging
from types import MappingProxyType
from typing import Iterable, Iterator, List, Optional

from answer_sheet_pipeline.regions.schemas import Region
from answer_sheet_pipeline.templates.schemas import (
    BubbleGrid,
    ExpectedElement,
    PrimaryFormat,
    QuestionType,
    TemplateDefinition,
    TextField,
)

logger = logging.getLogger(__name__)

# US letter at 150 dpi
PAGE_WIDTH = 1275
PAGE_HEIGHT = 1650

HEADER = Region(left=75, top=20, width=1125, height=100, label="header")
STUDENT_ID = Region(left=900, top=30, width=300, height=80, label="student_id")


class TemplateNotFoundError(KeyError):
    """Raised when a template id is not registered."""


class TemplateRegistry:
    """Maps template ids to immutable TemplateDefinitions."""

    def __init__(self, templates: Iterable[TemplateDefinition]):
        """Initializes the registry.

        Args:
            templates (Iterable[TemplateDefinition]): Templates to register. Ids must be unique.

        Raises:
            ValueError: If two templates share an id.
        """
        by_id = {}
        for template in templates:
            if template.template_id in by_id:
                raise ValueError(f"Duplicate template id: {template.template_id}")
            by_id[template.template_id] = template
        self._templates = MappingProxyType(by_id)
        logger.debug(f"Template registry loaded with {len(by_id)} templates")

    def __iter__(self) -> Iterator[TemplateDefinition]:
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    def get(self, template_id: str) -> TemplateDefinition:
        """Looks up a template by id.

        Raises:
            TemplateNotFoundError: If the id is unknown.
        """
        try:
            return self._templates[template_id]
        except KeyError as e:
            raise TemplateNotFoundError(template_id) from e

    def by_format(self, primary_format: PrimaryFormat) -> List[TemplateDefinition]:
        """Non-generic templates of the given format."""
        return [t for t in self._templates.values() if t.primary_format == primary_format and not t.generic]

    def generic_for(self, primary_format: PrimaryFormat) -> Optional[TemplateDefinition]:
        """The generic fallback layout for a format, if one is registered."""
        for template in self._templates.values():
            if template.generic and template.primary_format == primary_format:
                return template
        return None


def _standard_grid(rows: int) -> BubbleGrid:
    return BubbleGrid(
        rows=rows,
        columns=5,
        bubble_radius=8,
        horizontal_spacing=25,
        vertical_spacing=20,
        start_x=500,
        start_y=150,
    )


def _short_answer_fields(first_question: int, count: int, top: float, pitch: float) -> List[TextField]:
    return [
        TextField(
            question_number=first_question + i,
            question_type=QuestionType.TEXT,
            box=Region(left=150, top=top + i * pitch, width=900, height=pitch - 20, label="short_answer"),
        )
        for i in range(count)
    ]


def built_in_templates() -> List[TemplateDefinition]:
    """Layouts produced by the test creator, plus one generic layout per format."""
    standard_grid = _standard_grid(rows=50)
    mixed_grid = _standard_grid(rows=25)

    mixed_short = _short_answer_fields(first_question=26, count=5, top=700, pitch=70)
    mixed_essays = [
        TextField(
            question_number=31,
            question_type=QuestionType.ESSAY,
            box=Region(left=150, top=1060, width=975, height=200, label="essay"),
        ),
        TextField(
            question_number=32,
            question_type=QuestionType.ESSAY,
            box=Region(left=150, top=1280, width=975, height=230, label="essay"),
        ),
    ]

    text_short = _short_answer_fields(first_question=1, count=8, top=200, pitch=110)
    text_essays = [
        TextField(
            question_number=9,
            question_type=QuestionType.ESSAY,
            box=Region(left=150, top=1080, width=975, height=200, label="essay"),
        ),
        TextField(
            question_number=10,
            question_type=QuestionType.ESSAY,
            box=Region(left=150, top=1300, width=975, height=220, label="essay"),
        ),
    ]

    header_element = ExpectedElement(name="exam_header", box=HEADER)
    id_element = ExpectedElement(name="student_id", box=STUDENT_ID, required=False)

    return [
        TemplateDefinition(
            template_id="test_creator_standard",
            name="Standard bubble sheet",
            primary_format=PrimaryFormat.BUBBLE_SHEET,
            page_width=PAGE_WIDTH,
            page_height=PAGE_HEIGHT,
            header_region=HEADER,
            id_region=STUDENT_ID,
            bubble_grid=standard_grid,
            expected_elements=(header_element, id_element),
        ),
        TemplateDefinition(
            template_id="test_creator_mixed",
            name="Mixed bubble and written answers",
            primary_format=PrimaryFormat.MIXED_FORMAT,
            page_width=PAGE_WIDTH,
            page_height=PAGE_HEIGHT,
            header_region=HEADER,
            id_region=STUDENT_ID,
            bubble_grid=mixed_grid,
            text_fields=tuple(mixed_short + mixed_essays),
            expected_elements=(
                header_element,
                id_element,
                ExpectedElement(name="short_answer_block", box=mixed_short[0].box),
                ExpectedElement(name="essay_block", box=mixed_essays[0].box),
            ),
        ),
        TemplateDefinition(
            template_id="text_response_sheet",
            name="Written response sheet",
            primary_format=PrimaryFormat.TEXT_BASED,
            page_width=PAGE_WIDTH,
            page_height=PAGE_HEIGHT,
            header_region=HEADER,
            id_region=STUDENT_ID,
            text_fields=tuple(text_short + text_essays),
            expected_elements=(
                header_element,
                id_element,
                ExpectedElement(name="first_answer_box", box=text_short[0].box),
                ExpectedElement(name="last_answer_box", box=text_essays[-1].box),
            ),
        ),
        TemplateDefinition(
            template_id="generic_bubble_sheet",
            name="Generic bubble sheet",
            primary_format=PrimaryFormat.BUBBLE_SHEET,
            page_width=PAGE_WIDTH,
            page_height=PAGE_HEIGHT,
            header_region=HEADER,
            bubble_grid=standard_grid,
            generic=True,
        ),
        TemplateDefinition(
            template_id="generic_mixed_format",
            name="Generic mixed sheet",
            primary_format=PrimaryFormat.MIXED_FORMAT,
            page_width=PAGE_WIDTH,
            page_height=PAGE_HEIGHT,
            header_region=HEADER,
            bubble_grid=mixed_grid,
            text_fields=tuple(mixed_short + mixed_essays),
            generic=True,
        ),
        TemplateDefinition(
            template_id="generic_text_based",
            name="Generic written sheet",
            primary_format=PrimaryFormat.TEXT_BASED,
            page_width=PAGE_WIDTH,
            page_height=PAGE_HEIGHT,
            header_region=HEADER,
            text_fields=(
                TextField(
                    question_number=1,
                    question_type=QuestionType.ESSAY,
                    box=Region(left=75, top=150, width=1125, height=1350, label="essay"),
                ),
            ),
            generic=True,
        ),
    ]


def default_registry() -> TemplateRegistry:
    """Registry holding the built-in templates."""
    return TemplateRegistry(built_in_templates())
