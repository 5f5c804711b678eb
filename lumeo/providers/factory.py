from typing import Dict, Optional

from lumeo.common.config import DEFAULT_PROVIDER_CONFIGS, ProviderConfig
from lumeo.common.errors import UnknownProviderError
from lumeo.common.models.jobs import ProviderID
from lumeo.providers.base import ProviderAdapter
from lumeo.providers.chatgpt import ChatGPTAdapter
from lumeo.providers.comfyui import ComfyUIAdapter
from lumeo.providers.fooocus import FooocusAdapter
from lumeo.providers.replicate import ReplicateAdapter

# --- Factory ---

class ProviderFactory:
    @staticmethod
    def create(config: ProviderConfig) -> ProviderAdapter:
        if config.provider_id == ProviderID.REPLICATE:
            return ReplicateAdapter(config)
        elif config.provider_id == ProviderID.FOOOCUS:
            return FooocusAdapter(config)
        elif config.provider_id == ProviderID.COMFYUI_AWS:
            return ComfyUIAdapter(config)
        elif config.provider_id == ProviderID.CHATGPT:
            return ChatGPTAdapter(config)
        else:
            raise UnknownProviderError(f"Unknown provider: {config.provider_id}")

    @staticmethod
    def default_adapters(configs: Optional[Dict[ProviderID, ProviderConfig]] = None) -> Dict[ProviderID, ProviderAdapter]:
        configs = configs or DEFAULT_PROVIDER_CONFIGS
        return {provider_id: ProviderFactory.create(config) for provider_id, config in configs.items()}
