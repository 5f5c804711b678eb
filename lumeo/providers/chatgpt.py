from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from lumeo.common.models.jobs import JobStatus, RemoteJobState
from lumeo.providers.base import ProviderAdapter

# --- Wire Models ---

class ChoiceMessage(BaseModel):
    role: str
    content: Optional[str] = None
    refusal: Optional[str] = None

class Choice(BaseModel):
    index: int
    message: ChoiceMessage
    finish_reason: Optional[str] = None

class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

class ChatCompletion(BaseModel):
    id: str
    object: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[Choice]
    usage: Optional[Usage] = None

# --- Adapter ---

SAMPLING_DEFAULTS = {
    "temperature": 1,
    "max_tokens": 2048,
    "top_p": 1,
    "frequency_penalty": 0,
    "presence_penalty": 0,
}

class ChatGPTAdapter(ProviderAdapter):
    """
    OpenAI chat completions. The response is final: there is nothing to
    poll, so every parsed state is already terminal.
    """

    def build_request(self, parameters: Dict[str, Any]) -> bytes:
        prompt = self.require(parameters, "prompt")
        messages = []
        if parameters.get("system_prompt"):
            messages.append({"role": "system", "content": [{"type": "text", "text": parameters["system_prompt"]}]})
        messages.append({"role": "user", "content": [{"type": "text", "text": prompt}]})

        payload = {
            "model": parameters.get("model") or self.config.model,
            "messages": messages,
            "response_format": {"type": parameters.get("response_format", "text")},
        }
        for key, default in SAMPLING_DEFAULTS.items():
            payload[key] = parameters.get(key, default)
        return self.encode(payload)

    def parse_submit_response(self, body: bytes) -> RemoteJobState:
        completion = ChatCompletion.model_validate_json(body)
        outputs = [c.message.content for c in completion.choices if c.message.content]
        refusals = [c.message.refusal for c in completion.choices if c.message.refusal]

        status = JobStatus.SUCCEEDED
        error_message = None
        if not outputs and refusals:
            status = JobStatus.FAILED
            error_message = refusals[0]

        return RemoteJobState(
            id=completion.id,
            provider_id=self.provider_id,
            status=status,
            outputs=outputs,
            error_message=error_message,
            progress_percent=100.0,
            last_updated=self.now(),
        )
