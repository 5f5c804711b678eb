import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field

from lumeo.common.errors import MissingCredentialError
from lumeo.common.models.jobs import ProviderID

# Orchestration limits
MAX_CONCURRENT_SUBMISSIONS = int(os.getenv("LUMEO_MAX_CONCURRENCY", 3))
REQUEST_TIMEOUT_SEC = float(os.getenv("LUMEO_REQUEST_TIMEOUT", 30.0))
MAX_RETRIES = int(os.getenv("LUMEO_MAX_RETRIES", 3))
RETRY_BASE_DELAY_SEC = float(os.getenv("LUMEO_RETRY_BASE_DELAY", 1.0))
POLL_INTERVAL_SEC = float(os.getenv("LUMEO_POLL_INTERVAL", 2.0))

# Persistence
PERSISTENCE_BACKEND = os.getenv("LUMEO_PERSISTENCE", "sqlite")  # sqlite, minio, memory
DB_PATH = os.getenv("LUMEO_DB_PATH", "lumeo.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("LUMEO_MINIO_BUCKET", "lumeo-history")

# Credentials
KEY_DIR = os.getenv("LUMEO_KEY_DIR", str(Path.home() / ".lumeo" / "keys"))
API_TOKEN = os.getenv("LUMEO_API_TOKEN")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")


class Keys:
    CHATGPT = "CHATGPT_API_KEY"
    REPLICATE = "REPLICATE_API_KEY"
    FOOOCUS = "FOOOCUS_API_KEY"
    COMFYUI = "COMFYUI_API_KEY"


class ProviderConfig(BaseModel):
    provider_id: ProviderID
    endpoint: str
    credential_key: str
    version: Optional[str] = None
    model: Optional[str] = None
    extra_headers: Dict[str, str] = Field(default_factory=dict)


DEFAULT_PROVIDER_CONFIGS: Dict[ProviderID, ProviderConfig] = {
    ProviderID.REPLICATE: ProviderConfig(
        provider_id=ProviderID.REPLICATE,
        endpoint=os.getenv("REPLICATE_ENDPOINT", "https://api.replicate.com/v1/predictions"),
        credential_key=Keys.REPLICATE,
        version="613a21a57e8545532d2f4016a7c3cfa3c7c63fded03001c2e69183d557a929db",
    ),
    ProviderID.FOOOCUS: ProviderConfig(
        provider_id=ProviderID.FOOOCUS,
        endpoint=os.getenv("FOOOCUS_ENDPOINT", "https://api.replicate.com/v1/predictions"),
        credential_key=Keys.FOOOCUS,
        version="foggy/fooocus:a747ba68d7fccb91fa1bbb6f11e5eb58017d81f5fa5bfd5e6d8e45d03a914c1c",
    ),
    ProviderID.COMFYUI_AWS: ProviderConfig(
        provider_id=ProviderID.COMFYUI_AWS,
        endpoint=os.getenv("COMFYUI_ENDPOINT", "https://api.aws.amazon.com/v1/comfyui/predictions"),
        credential_key=Keys.COMFYUI,
        version="foggy/comfyui:latest",
        extra_headers={"x-aws-region": AWS_REGION},
    ),
    ProviderID.CHATGPT: ProviderConfig(
        provider_id=ProviderID.CHATGPT,
        endpoint=os.getenv("CHATGPT_ENDPOINT", "https://api.openai.com/v1/chat/completions"),
        credential_key=Keys.CHATGPT,
        model="gpt-4o-mini-2024-07-18",
    ),
}


class CredentialResolver:
    """
    Resolves provider secrets: process environment first, then a
    `<KEY>.key` file in the local key directory.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None, key_dir: Optional[str] = None):
        self.environ = os.environ if environ is None else environ
        self.key_dir = Path(key_dir or KEY_DIR)

    def _load_key_file(self, key: str) -> Optional[str]:
        path = self.key_dir / f"{key}.key"
        if not path.is_file():
            return None
        value = path.read_text(encoding="utf-8").strip()
        return value or None

    def get_credential(self, key: str) -> str:
        value = self.environ.get(key)
        if value:
            return value
        value = self._load_key_file(key)
        if value:
            return value
        raise MissingCredentialError(key)

    __call__ = get_credential
