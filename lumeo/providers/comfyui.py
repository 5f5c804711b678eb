from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from lumeo.common.errors import InvalidParametersError
from lumeo.common.models.json_value import JSONKind, JSONValue
from lumeo.providers.replicate import Prediction, ReplicateAdapter

DEFAULT_NODE_ID = "3"  # VAEDecode

DEFAULT_WORKFLOW = """
{
    "nodes": {
        "1": {"id": "1", "type": "CLIPTextEncode", "inputs": {"text": "", "clip": "clip"}},
        "2": {
            "id": "2",
            "type": "KSampler",
            "inputs": {
                "seed": 0,
                "steps": 28,
                "cfg": 7,
                "sampler_name": "euler_ancestral",
                "scheduler": "normal",
                "denoise": 1,
                "model": "model",
                "positive": "pos",
                "negative": "neg",
                "latent_image": "latent"
            }
        },
        "3": {"id": "3", "type": "VAEDecode", "inputs": {"samples": "samples", "vae": "vae"}}
    },
    "edges": [
        {"source_node": "1", "source_output": "CONDITIONING", "target_node": "2", "target_input": "positive"},
        {"source_node": "2", "source_output": "LATENT", "target_node": "3", "target_input": "samples"}
    ]
}
"""

DEFAULT_INPUT = {
    "hf_lora": "default",
    "lora_scale": 1.0,
    "num_outputs": 1,
    "aspect_ratio": "1024×1024",
    "output_format": "png",
    "guidance_scale": 7.0,
    "output_quality": 80,
    "prompt_strength": 0.8,
    "num_inference_steps": 28,
    "node_id": DEFAULT_NODE_ID,
    "execution_mode": "sequential",
    "priority": 1,
}

EXECUTION_MODES = ("sequential", "parallel")


def load_workflow(raw: Any = None) -> JSONValue:
    """
    Parses and checks a ComfyUI workflow graph. Node inputs are
    heterogeneous (strings, numbers, nulls) so they stay as JSONValue.
    """
    if raw is None:
        workflow = JSONValue.loads(DEFAULT_WORKFLOW)
    elif isinstance(raw, (str, bytes)):
        workflow = JSONValue.loads(raw)
    else:
        workflow = JSONValue.from_python(raw)

    if workflow.kind is not JSONKind.OBJECT:
        raise ValueError("Workflow must be a JSON object")
    nodes = workflow.get("nodes")
    edges = workflow.get("edges")
    if nodes is None or nodes.kind is not JSONKind.OBJECT:
        raise ValueError("Workflow is missing a 'nodes' object")
    if edges is None or edges.kind is not JSONKind.ARRAY:
        raise ValueError("Workflow is missing an 'edges' array")

    for node_id, node in nodes.value.items():
        if node.kind is not JSONKind.OBJECT:
            raise ValueError(f"Node {node_id} must be an object")
        if node.get("type") is None or node.get("inputs") is None:
            raise ValueError(f"Node {node_id} needs 'type' and 'inputs'")
        node_inputs = node.get("inputs")
        if node_inputs.kind is not JSONKind.OBJECT:
            raise ValueError(f"Node {node_id} inputs must be an object")

    for edge in edges.value:
        if edge.kind is not JSONKind.OBJECT:
            raise ValueError("Edges must be objects")
        for key in ("source_node", "source_output", "target_node", "target_input"):
            if edge.get(key) is None:
                raise ValueError(f"Edge is missing '{key}'")
        if edge.get("source_node").as_str() not in nodes.value or edge.get("target_node").as_str() not in nodes.value:
            raise ValueError("Edge references an unknown node")
    return workflow


# --- Wire Models ---

class ComfyProgress(BaseModel):
    percentage: float
    current_node: Optional[str] = None
    estimated_time_remaining: Optional[float] = None

class NodeExecution(BaseModel):
    node_id: str
    status: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    error: Optional[str] = None

class ComfyPrediction(Prediction):
    progress: Optional[ComfyProgress] = None
    node_executions: List[NodeExecution] = Field(default_factory=list)


class ComfyUIAdapter(ReplicateAdapter):
    """ComfyUI behind AWS API Gateway. Replicate-shaped predictions plus a workflow graph."""

    default_input: Dict[str, Any] = DEFAULT_INPUT
    prediction_model = ComfyPrediction

    def build_input(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        input_data = super().build_input(parameters)
        try:
            workflow = load_workflow(parameters.get("workflow"))
        except (ValueError, TypeError) as e:
            raise InvalidParametersError(f"Invalid workflow: {e}") from e
        if input_data["node_id"] not in workflow.get("nodes").value:
            raise InvalidParametersError(f"Unknown node id {input_data['node_id']!r}")
        if input_data["execution_mode"] not in EXECUTION_MODES:
            raise InvalidParametersError(f"Unknown execution mode {input_data['execution_mode']!r}")

        input_data["workflow"] = workflow.to_python()
        # Wire name for custom workflow data
        if "custom_workflow_data" in input_data:
            input_data["workflow_data"] = input_data.pop("custom_workflow_data")
        return input_data

    def progress_for(self, prediction: ComfyPrediction) -> Optional[float]:
        if prediction.progress is None:
            return None
        return prediction.progress.percentage
