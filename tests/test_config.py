from answer_sheet_pipeline.config import Settings


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("MAX_RETRIES", "4")
    monkeypatch.setenv("AWS_REGION", "us-west-2")
    settings = Settings()
    assert settings.MAX_RETRIES == 4
    assert settings.AWS_REGION == "us-west-2"


def test_initializer_override():
    settings = Settings(GEOMETRIC_MAX_DEVIATION=20.0, AWS_REGION="ap-south-1")
    assert settings.GEOMETRIC_MAX_DEVIATION == 20.0
    assert settings.AWS_REGION == "ap-south-1"


def test_threshold_defaults():
    settings = Settings()
    assert settings.INTERFERENCE_WARNING_THRESHOLD < settings.INTERFERENCE_CRITICAL_THRESHOLD
    assert settings.SIMPLE_COMPLEXITY_THRESHOLD == 25.0
    assert settings.RECOVERY_ACCEPTANCE_THRESHOLD == 0.75
