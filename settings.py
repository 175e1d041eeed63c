import os
from pathlib import Path

# load_dotenv() runs before anything reads os.environ so values from .env
# are visible to every module that imports settings.
from dotenv import load_dotenv
load_dotenv()

ROOT_DIR = Path(__file__).resolve().parent

TEMPLATE_PATH = Path(os.environ.get("TEMPLATE_PATH", ROOT_DIR / "templates" / "code_of_conduct.pdf"))
TEMPLATE_URL: str = os.environ.get("TEMPLATE_URL", "")

FILL_SERVICE_URL: str = os.environ.get("FILL_SERVICE_URL", "")
FILL_SERVICE_TOKEN: str = os.environ.get("FILL_SERVICE_TOKEN", "")
HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "30"))

MAPPINGS_DIR = Path(os.environ.get("MAPPINGS_DIR", ROOT_DIR / "mappings_store"))
SUBMISSIONS_DIR = Path(os.environ.get("SUBMISSIONS_DIR", ROOT_DIR / "submissions_store"))

# Record key holding the signature/photo URL; the only field drawn as an image.
IMAGE_FIELD: str = os.environ.get("IMAGE_FIELD", "signature_url")
# Record key used to name single-file deliverables and archive entries.
DISPLAY_NAME_FIELD: str = os.environ.get("DISPLAY_NAME_FIELD", "full_name")

CORS_ORIGINS: list[str] = [
    origin.strip() for origin in os.environ.get("CORS_ORIGINS", "*").split(",") if origin.strip()
]

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()
