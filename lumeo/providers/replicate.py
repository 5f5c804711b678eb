from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, Field

from lumeo.common.models.jobs import RemoteJobState
from lumeo.common.models.json_value import JSONValue
from lumeo.providers.base import ProviderAdapter, outputs_from, parse_status

# --- Wire Models ---

class PredictionURLs(BaseModel):
    get: str
    cancel: str
    webhook: Optional[str] = None

class Prediction(BaseModel):
    id: str
    request_id: Optional[str] = None
    model: Optional[str] = None
    version: Optional[str] = None
    status: str
    input: Optional[Dict[str, Any]] = None
    output: Any = None
    error: Optional[str] = None
    logs: Optional[str] = None
    urls: Optional[PredictionURLs] = None
    metrics: Dict[str, Any] = Field(default_factory=dict)

# --- Adapter ---

DEFAULT_INPUT = {
    "hf_lora": "alvdansen/frosting_lane_flux",
    "lora_scale": 1.0,
    "num_outputs": 1,
    "aspect_ratio": "4:5",
    "output_format": "png",
    "guidance_scale": 3.5,
    "output_quality": 80,
    "prompt_strength": 0.8,
    "num_inference_steps": 28,
}

class ReplicateAdapter(ProviderAdapter):
    """Replicate predictions API: POST {version, input}, poll urls.get."""

    default_input: Dict[str, Any] = DEFAULT_INPUT
    prediction_model: Type[Prediction] = Prediction

    def build_input(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        prompt = self.require(parameters, "prompt")
        input_data = dict(self.default_input)
        input_data.update({k: v for k, v in parameters.items() if k != "version"})
        input_data["prompt"] = prompt
        return {k: v for k, v in input_data.items() if v is not None}

    def build_request(self, parameters: Dict[str, Any]) -> bytes:
        payload = {
            "version": parameters.get("version") or self.config.version,
            "input": self.build_input(parameters),
        }
        return self.encode(payload)

    def poll_uri_for(self, prediction: Prediction) -> str:
        if prediction.urls is None:
            raise ValueError("Prediction response has no urls")
        return prediction.urls.get

    def cancel_uri_for(self, prediction: Prediction) -> str:
        if prediction.urls is None:
            raise ValueError("Prediction response has no urls")
        return prediction.urls.cancel

    def progress_for(self, prediction: Prediction) -> Optional[float]:
        # Log-derived progress is computed by the store
        return None

    def parse_submit_response(self, body: bytes) -> RemoteJobState:
        prediction = self.prediction_model.model_validate_json(body)
        state = RemoteJobState(
            id=prediction.id,
            request_id=prediction.request_id,
            provider_id=self.provider_id,
            status=parse_status(prediction.status),
            outputs=outputs_from(JSONValue.from_python(prediction.output)),
            error_message=prediction.error,
            progress_percent=self.progress_for(prediction),
            logs=prediction.logs,
            poll_uri=self.poll_uri_for(prediction),
            cancel_uri=self.cancel_uri_for(prediction),
            last_updated=self.now(),
        )
        self.logger.debug(f"Prediction {state.id} is {state.status.value}")
        return state
