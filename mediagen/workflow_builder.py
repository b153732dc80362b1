# mediagen/workflow_builder.py

import json
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Tuple

from config.settings import settings

from .errors import ValidationError

SEED_RANGE = 10**12
DEFAULT_SIZE = 512
DEFAULT_NEGATIVE_PROMPT = "text, watermark"


class NodeRef(NamedTuple):
    """Tham chiếu tới output ``slot`` của node ``node_id`` trong cùng graph."""

    node_id: str
    slot: int


@dataclass
class WorkflowNode:
    id: str
    class_type: str
    inputs: Dict[str, Any] = field(default_factory=dict)

    def references(self) -> Iterator[Tuple[str, NodeRef]]:
        for name, value in self.inputs.items():
            if isinstance(value, NodeRef):
                yield name, value


@dataclass
class WorkflowGraph:
    """
    DAG gửi sang ComfyUI /prompt. Node id là string cố định của template,
    input là literal hoặc NodeRef.
    """

    nodes: Dict[str, WorkflowNode] = field(default_factory=dict)

    def add(self, node_id: str, class_type: str, **inputs: Any) -> NodeRef:
        self.nodes[node_id] = WorkflowNode(node_id, class_type, inputs)
        return NodeRef(node_id, 0)

    def __len__(self) -> int:
        return len(self.nodes)

    def edges(self) -> List[Tuple[str, str, NodeRef]]:
        """(node_id, input_name, ref) cho mọi tham chiếu trong graph."""
        return [
            (node.id, name, ref)
            for node in self.nodes.values()
            for name, ref in node.references()
        ]

    def validate(self) -> None:
        for node_id, name, ref in self.edges():
            if ref.node_id not in self.nodes:
                raise ValidationError(
                    f"Node {node_id}.{name} references missing node {ref.node_id}"
                )

    # ---- ComfyUI API format ----

    def to_prompt(self) -> Dict[str, Any]:
        prompt: Dict[str, Any] = {}
        for node in self.nodes.values():
            inputs = {
                k: [v.node_id, v.slot] if isinstance(v, NodeRef) else v
                for k, v in node.inputs.items()
            }
            prompt[node.id] = {"class_type": node.class_type, "inputs": inputs}
        return prompt

    @classmethod
    def from_prompt(cls, prompt: Dict[str, Any]) -> "WorkflowGraph":
        graph = cls()
        for node_id, node in prompt.items():
            if not isinstance(node, dict) or "class_type" not in node:
                raise ValidationError(f"Malformed workflow node: {node_id}")
            inputs = {k: _parse_input(v) for k, v in node.get("inputs", {}).items()}
            graph.nodes[str(node_id)] = WorkflowNode(str(node_id), node["class_type"], inputs)
        return graph

    def dumps(self, **kw: Any) -> str:
        return json.dumps(self.to_prompt(), ensure_ascii=False, **kw)

    @classmethod
    def loads(cls, text: str) -> "WorkflowGraph":
        return cls.from_prompt(json.loads(text))


def _parse_input(value: Any) -> Any:
    # ComfyUI encodes links as [node_id, output_index]
    if (
        isinstance(value, list)
        and len(value) == 2
        and isinstance(value[0], str)
        and isinstance(value[1], int)
    ):
        return NodeRef(value[0], value[1])
    return value


def random_seed() -> int:
    return random.randrange(SEED_RANGE)


def build_text_to_image_workflow(
    prompt: str,
    negative_prompt: Optional[str] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    seed: Optional[int] = None,
    checkpoint: Optional[str] = None,
) -> WorkflowGraph:
    """
    Build workflow GEN (text -> image):
    - checkpoint loader, 2 CLIPTextEncode (positive/negative)
    - EmptyLatentImage width x height (mặc định 512x512), batch 1
    - KSampler với seed random trong [0, 10^12)
    - VAEDecode -> SaveImage
    Không kiểm tra checkpoint có tồn tại trên ComfyUI hay không.
    """
    wf = WorkflowGraph()
    wf.add("4", "CheckpointLoaderSimple", ckpt_name=checkpoint or settings.COMFYUI_CHECKPOINT)
    model, clip, vae = NodeRef("4", 0), NodeRef("4", 1), NodeRef("4", 2)

    positive = wf.add("6", "CLIPTextEncode", text=prompt, clip=clip)
    negative = wf.add(
        "7",
        "CLIPTextEncode",
        text=negative_prompt if negative_prompt is not None else DEFAULT_NEGATIVE_PROMPT,
        clip=clip,
    )
    latent = wf.add(
        "5",
        "EmptyLatentImage",
        width=width or DEFAULT_SIZE,
        height=height or DEFAULT_SIZE,
        batch_size=1,
    )
    samples = wf.add(
        "3",
        "KSampler",
        seed=seed if seed is not None else random_seed(),
        steps=20,
        cfg=8,
        sampler_name="euler",
        scheduler="normal",
        denoise=1,
        model=model,
        positive=positive,
        negative=negative,
        latent_image=latent,
    )
    image = wf.add("8", "VAEDecode", samples=samples, vae=vae)
    wf.add("9", "SaveImage", filename_prefix="ComfyUI", images=image)
    return wf


def save_debug_workflow(workflow: WorkflowGraph, filename: str) -> Optional[Path]:
    """
    (Tuỳ chọn) Lưu workflow đã build vào WORKFLOW_DEBUG_DIR để debug.
    Trả về None nếu chưa cấu hình thư mục.
    """
    if not settings.WORKFLOW_DEBUG_DIR:
        return None
    debug_dir = Path(settings.WORKFLOW_DEBUG_DIR)
    debug_dir.mkdir(parents=True, exist_ok=True)
    path = debug_dir / filename
    with path.open("w", encoding="utf-8") as f:
        f.write(workflow.dumps(indent=2))
    return path
