from typing import Any, Dict, Optional

from lumeo.common.models.jobs import JobStatus
from lumeo.providers.base import parse_status
from lumeo.providers.replicate import Prediction, ReplicateAdapter

DEFAULT_INPUT = {
    "negative_prompt": "blur, low quality, bad anatomy, bad hands, cropped, worst quality",
    "style_selections": ["Enhance", "HDR"],
    "performance_selection": "Speed",
    "aspect_ratios_selection": "1024×1024",
    "image_number": 1,
    "sharpness": 2.0,
    "guidance_scale": 7.0,
    "num_outputs": 1,
    "aspect_ratio": "1024×1024",
    "output_format": "png",
    "output_quality": 80,
    "prompt_strength": 0.8,
    "num_inference_steps": 28,
}

# Coarse progress when the provider sends no percentage in its logs
STATUS_PROGRESS = {
    JobStatus.STARTING: 20.0,
    JobStatus.PROCESSING: 50.0,
    JobStatus.SUCCEEDED: 100.0,
}

class FooocusAdapter(ReplicateAdapter):
    """Fooocus model hosted on Replicate. Same lifecycle, richer input."""

    default_input: Dict[str, Any] = DEFAULT_INPUT

    def build_input(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        input_data = super().build_input(parameters)
        # Fooocus reads the aspect ratio from aspect_ratios_selection
        if "aspect_ratio" in parameters and "aspect_ratios_selection" not in parameters:
            input_data["aspect_ratios_selection"] = parameters["aspect_ratio"]
        if "num_outputs" in parameters and "image_number" not in parameters:
            input_data["image_number"] = parameters["num_outputs"]
        return input_data

    def poll_uri_for(self, prediction: Prediction) -> str:
        if prediction.urls is not None:
            return prediction.urls.get
        return f"{self.config.endpoint.rstrip('/')}/{prediction.id}"

    def cancel_uri_for(self, prediction: Prediction) -> str:
        if prediction.urls is not None:
            return prediction.urls.cancel
        return f"{self.config.endpoint.rstrip('/')}/{prediction.id}/cancel"

    def progress_for(self, prediction: Prediction) -> Optional[float]:
        return STATUS_PROGRESS.get(parse_status(prediction.status))
