import pytest

from answer_sheet_pipeline.marks.schemas import HandwritingVerdict, Mark, MarkType, StrokeFeatures
from answer_sheet_pipeline.regions.roi_manager import RoiConfig, RoiManager
from answer_sheet_pipeline.regions.schemas import Region
from answer_sheet_pipeline.templates.registry import default_registry


@pytest.fixture
def manager():
    return RoiManager(RoiConfig())


@pytest.fixture
def standard_template():
    return default_registry().get("test_creator_standard")


def verdict(mark_type, is_handwriting=True, region_type="other"):
    features = StrokeFeatures(aspect_ratio=1.0, irregularity=0.5, stroke_width=2.0, pressure=0.8, consistency=0.3)
    return HandwritingVerdict(
        is_handwriting=is_handwriting,
        confidence=0.8 if is_handwriting else 0.2,
        mark_type=mark_type,
        stroke_features=features,
        region_type=region_type,
    )


def mark(x, y, width=20, height=10):
    return Mark(x=x, y=y, width=width, height=height, intensity=40.0, area=width * height // 2)


def test_build_includes_template_regions(manager, standard_template):
    region = manager.build(standard_template, 1275, 1650)

    labels = [r.label for r in region.include]
    assert labels == ["header", "student_id", "bubble_grid"]
    grid = region.include[2]
    assert grid.confidence == 0.98
    assert grid.left == pytest.approx(500 - 8 - 20)
    assert grid.top == pytest.approx(150 - 8 - 20)
    assert region.include[0].confidence == 0.95


def test_build_excludes_margins_and_bottom_band(manager, standard_template):
    region = manager.build(standard_template, 1275, 1650)

    by_label = {r.label: r for r in region.exclude}
    assert set(by_label) == {"left_margin", "right_margin", "bottom_band"}
    assert by_label["left_margin"].width == 50
    assert by_label["right_margin"].left == 1275 - 50
    assert by_label["bottom_band"].top == 1650 - 100
    assert by_label["bottom_band"].confidence == 0.6


def test_build_without_template_has_no_includes(manager):
    region = manager.build(None, 400, 300)

    assert region.include == ()
    assert len(region.exclude) == 3


def test_refine_adds_buffered_noise_without_mutating(manager, standard_template):
    region = manager.build(standard_template, 1275, 1650)
    noise = Region(left=700, top=400, width=40, height=20)

    refined = manager.refine(region, [noise])

    assert len(region.exclude) == 3
    assert refined.noise_regions[0].left == 695
    assert refined.noise_regions[0].width == 50
    assert refined.noise_regions[0].confidence == 0.8
    assert manager.refine(region, []) is region


def test_penalty_for_overlapping_exclusion(manager, standard_template):
    region = manager.build(standard_template, 1275, 1650)

    assert manager.penalty_for(region, Region(left=10, top=500, width=20, height=20)) == 0.7
    assert manager.penalty_for(region, Region(left=600, top=500, width=20, height=20)) == 1.0


def test_region_type_at(manager, standard_template):
    region = manager.build(standard_template, 1275, 1650)

    assert manager.region_type_at(region, 550, 300) == "bubble"
    assert manager.region_type_at(region, 100, 800) == "other"


def test_noise_regions_from_verdicts(manager):
    marks = [mark(100, 100), mark(200, 200), mark(300, 300), mark(400, 400)]
    verdicts = [
        verdict(MarkType.SCRATCH_WORK),
        verdict(MarkType.TEXT, region_type="text"),
        verdict(MarkType.TEXT, region_type="bubble"),
        verdict(MarkType.BUBBLE_FILL, is_handwriting=False, region_type="bubble"),
    ]

    noise = manager.noise_regions_from(marks, verdicts)

    assert [r.left for r in noise] == [100, 300]
