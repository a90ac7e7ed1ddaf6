"""Configuration settings for the answer sheet pipeline."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolution order used by pydantic-settings (highest first):
#   1. keyword arguments passed to Settings(...)
#   2. environment variables, e.g. export MAX_RETRIES=3
#   3. values from the project .env file, if one exists
#   4. the defaults declared below

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
ENV_FILE_PATH = PROJECT_ROOT / ".env"


class Settings(BaseSettings):  # type: ignore
    """Configuration settings for the answer sheet pipeline."""

    model_config = SettingsConfigDict(
        # Only load .env if it exists (local dev)
        env_file=str(ENV_FILE_PATH) if ENV_FILE_PATH.exists() else None,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # -- AWS --
    AWS_REGION: str = "eu-west-2"
    CHEAP_TIER_MODEL_ID: str = "amazon.nova-lite-v1:0"
    EXPENSIVE_TIER_MODEL_ID: str = "amazon.nova-pro-v1:0"
    TIER_MAX_TOKENS: int = 512

    # -- Template recognition --
    TEMPLATE_MIN_CONFIDENCE: float = 0.6
    FILENAME_HINT_BONUS: float = 0.05
    GENERIC_EXTRACTION_PENALTY: float = 0.8
    # Sheets print their layout in light drop-out ink; marks are dark ink.
    STRUCTURE_INK_THRESHOLD: int = 230
    MARK_INK_THRESHOLD: int = 190
    MIN_BUBBLE_COMPONENTS: int = 10
    MIN_TEXT_COMPONENTS: int = 25
    GRID_PRESENCE_RATIO: float = 0.6

    # -- Regions of interest (pixels) --
    BUBBLE_BUFFER: int = 20
    TEXT_BUFFER: int = 10
    MARGIN_WIDTH: int = 50
    BOTTOM_BAND_HEIGHT: int = 100
    NOISE_BUFFER: int = 5
    ROI_PENALTY: float = 0.7

    # -- Marks and handwriting --
    MIN_MARK_AREA: int = 12
    BUBBLE_REGION_HANDWRITING_THRESHOLD: float = 0.4
    OTHER_REGION_HANDWRITING_THRESHOLD: float = 0.6
    HANDWRITING_DISCARD_THRESHOLD: float = 0.7
    HANDWRITING_PENALTY_THRESHOLD: float = 0.5
    HANDWRITING_PENALTY: float = 0.8
    NEAR_BUBBLE_FACTOR: float = 1.5
    SCRATCH_AREA_THRESHOLD: int = 400
    ERASURE_MAX_PRESSURE: float = 0.35
    ERASURE_MIN_AREA: int = 150

    # -- Answer extraction --
    GRID_TOLERANCE_FACTOR: float = 1.5
    TEXT_MIN_LENGTH: int = 1
    TEXT_MAX_LENGTH: int = 100
    ESSAY_MIN_LENGTH: int = 10
    ESSAY_MAX_LENGTH: int = 1000
    BLANK_CONFIDENCE: float = 0.9
    FILL_THRESHOLD: float = 0.35
    FILL_MARGIN: float = 0.08
    EXTRACTION_MAX_WORKERS: int = 4

    # -- Complexity and routing --
    SIMPLE_COMPLEXITY_THRESHOLD: float = 25.0
    MAX_BATCH_SIZE: int = 8
    FALLBACK_CONFIDENCE_THRESHOLD: float = 0.7
    MIN_ESCALATION_COMPLEXITY: float = 15.0
    CHEAP_TIER_UNIT_COST: float = 0.00015
    EXPENSIVE_TIER_UNIT_COST: float = 0.003
    TEXT_CHARS_PER_WORK_UNIT: int = 250
    BATCH_TIMEOUT_SECONDS: float = 30.0
    TIER_DISAGREEMENT_PENALTY: float = 0.85

    # -- Validation --
    MIN_FILL_THRESHOLD: float = 0.6
    GEOMETRIC_MAX_DEVIATION: float = 15.0
    INTERFERENCE_WARNING_THRESHOLD: float = 0.3
    INTERFERENCE_CRITICAL_THRESHOLD: float = 0.4
    PATTERN_ANOMALY_THRESHOLD: float = 0.2
    QUESTION_COUNT_TOLERANCE: int = 2

    # -- Recovery --
    MAX_RETRIES: int = 2
    NOISE_FILTERING_INCREMENT: float = 0.15
    RECOVERY_ACCEPTANCE_THRESHOLD: float = 0.75
    REFOCUS_STEP: float = 0.2
    # Comma separated, tried in order by the alternative_method strategy.
    ALTERNATIVE_METHODS: str = "grid_realignment,expensive_tier"
    RECOVERY_MAX_WORKERS: int = 4

    # -- Document ids --
    SYSTEM_UUID_NAMESPACE: str = "3b6f1c2e-8d4a-5f70-9e21-c4a7d0b9e615"

    LOG_LEVEL: str = "INFO"


settings = Settings()
