"""Package initialization for answer_sheet_pipeline."""

from pathlib import Path

from dotenv import load_dotenv

# Load .env at package initialization
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
ENV_FILE_PATH = PROJECT_ROOT / ".env"

if ENV_FILE_PATH.exists():
    # Values already present in the environment (e.g. set by the deployment platform) win over the .env file,
    # which should not exist in production environments.
    load_dotenv(ENV_FILE_PATH, override=False)
