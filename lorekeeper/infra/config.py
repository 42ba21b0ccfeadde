import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DATA_DIR = Path(os.environ.get("LOREKEEPER_DATA_DIR", Path.home() / ".lorekeeper"))
DB_PATH = DATA_DIR / "lorekeeper.db"

OLLAMA_BASE_URL = os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL = os.environ.get("OLLAMA_MODEL", "qwen3:8b")

# LLM Provider: "ollama" (default, local) or "openai" (cloud, OpenAI-compatible)
LLM_PROVIDER = os.environ.get("LLM_PROVIDER", "ollama")
# Wire format for cloud mode: "openai" or "anthropic"
LLM_PROVIDER_FORMAT = os.environ.get("LLM_PROVIDER_FORMAT", "openai")

# Cloud LLM settings (used when LLM_PROVIDER="openai")
LLM_API_KEY = os.environ.get("LLM_API_KEY", "")
LLM_BASE_URL = os.environ.get("LLM_BASE_URL", "")
LLM_MODEL = os.environ.get("LLM_MODEL", "")
LLM_TIMEOUT = int(os.environ.get("LLM_TIMEOUT", "120"))

# Secondary provider for hybrid scans (always OpenAI-compatible). Empty = disabled.
SECONDARY_LLM_BASE_URL = os.environ.get("SECONDARY_LLM_BASE_URL", "")
SECONDARY_LLM_API_KEY = os.environ.get("SECONDARY_LLM_API_KEY", "")
SECONDARY_LLM_MODEL = os.environ.get("SECONDARY_LLM_MODEL", "")


def has_secondary_provider() -> bool:
    return bool(SECONDARY_LLM_BASE_URL and SECONDARY_LLM_MODEL)


def ensure_data_dir() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
