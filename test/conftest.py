import copy

import numpy as np
import pytest

from comfygraph.core.Project import Project
from comfygraph.noderegistry.NodeRegistry import parse


# A trimmed-down object_info as a stock engine reports it.
OBJECT_INFO = {
    "CheckpointLoaderSimple": {
        "input": {"required": {"ckpt_name": [["sd15.safetensors", "sdxl.safetensors"]]}},
        "output": ["MODEL", "CLIP", "VAE"],
        "output_is_list": [False, False, False],
        "output_name": ["MODEL", "CLIP", "VAE"],
        "name": "CheckpointLoaderSimple",
        "display_name": "Load Checkpoint",
        "description": "",
        "category": "loaders",
        "output_node": False,
    },
    "CLIPTextEncode": {
        "input": {"required": {"text": ["STRING", {"multiline": True}], "clip": ["CLIP"]}},
        "output": ["CONDITIONING"],
        "output_is_list": [False],
        "output_name": ["CONDITIONING"],
        "name": "CLIPTextEncode",
        "display_name": "CLIP Text Encode (Prompt)",
        "description": "",
        "category": "conditioning",
        "output_node": False,
    },
    "EmptyLatentImage": {
        "input": {
            "required": {
                "width": ["INT", {"default": 512, "min": 16, "max": 8192, "step": 8}],
                "height": ["INT", {"default": 512, "min": 16, "max": 8192, "step": 8}],
                "batch_size": ["INT", {"default": 1, "min": 1, "max": 64}],
            }
        },
        "output": ["LATENT"],
        "output_is_list": [False],
        "output_name": ["LATENT"],
        "name": "EmptyLatentImage",
        "display_name": "Empty Latent Image",
        "description": "",
        "category": "latent",
        "output_node": False,
    },
    "KSampler": {
        "input": {
            "required": {
                "model": ["MODEL"],
                "seed": ["INT", {"default": 0, "min": 0, "max": 0xFFFFFFFFFFFFFFFF}],
                "steps": ["INT", {"default": 20, "min": 1, "max": 10000}],
                "cfg": ["FLOAT", {"default": 8.0, "min": 0.0, "max": 100.0, "step": 0.1, "round": 0.01}],
                "sampler_name": [["euler", "euler_ancestral", "ddim"]],
                "scheduler": [["normal", "karras"]],
                "positive": ["CONDITIONING"],
                "negative": ["CONDITIONING"],
                "latent_image": ["LATENT"],
                "denoise": ["FLOAT", {"default": 1.0, "min": 0.0, "max": 1.0, "step": 0.01}],
            }
        },
        "output": ["LATENT"],
        "output_is_list": [False],
        "output_name": ["LATENT"],
        "name": "KSampler",
        "display_name": "KSampler",
        "description": "",
        "category": "sampling",
        "output_node": False,
    },
    "VAEDecode": {
        "input": {"required": {"samples": ["LATENT"], "vae": ["VAE"]}},
        "output": ["IMAGE"],
        "output_is_list": [False],
        "output_name": ["IMAGE"],
        "name": "VAEDecode",
        "display_name": "VAE Decode",
        "description": "",
        "category": "latent",
        "output_node": False,
    },
    "SaveImage": {
        "input": {
            "required": {
                "images": ["IMAGE"],
                "filename_prefix": ["STRING", {"default": "ComfyUI"}],
            },
            "hidden": {"prompt": "PROMPT", "extra_pnginfo": "EXTRA_PNGINFO"},
        },
        "output": [],
        "output_is_list": [],
        "output_name": [],
        "name": "SaveImage",
        "display_name": "Save Image",
        "description": "Saves the input images to your output directory.",
        "category": "image",
        "output_node": True,
    },
}


# Two kinds from the editor's smallest scenario: A produces text and an
# image, B consumes text.
TXT_IMG_INFO = {
    "A": {
        "input": {"required": {}},
        "output": ["TXT", "IMG"],
        "output_name": ["Text", "Image"],
        "name": "A",
        "display_name": "A",
        "category": "Dummy",
    },
    "B": {
        "input": {"required": {"Text": ["TXT"]}},
        "output": [],
        "output_name": [],
        "name": "B",
        "display_name": "B",
        "category": "Dummy",
    },
}


@pytest.fixture
def object_info():
    return copy.deepcopy(OBJECT_INFO)


@pytest.fixture
def schemas(object_info):
    return parse(object_info)


@pytest.fixture
def txt_img_schemas():
    return parse(copy.deepcopy(TXT_IMG_INFO))


def build_txt2img(schemas) -> Project:
    """
    Nodes:  0 CheckpointLoaderSimple  1 CLIPTextEncode (+)  2 CLIPTextEncode (-)
            3 EmptyLatentImage        4 KSampler            5 VAEDecode
            6 SaveImage
    """
    project = Project(schemas)
    for kind in ("CheckpointLoaderSimple", "CLIPTextEncode", "CLIPTextEncode",
                 "EmptyLatentImage", "KSampler", "VAEDecode", "SaveImage"):
        project.add_node(kind)

    graph = project.graph
    graph.set_field_option(0, "ckpt_name", 0)
    graph.set_field_text(1, "text", "a lighthouse at dusk")
    graph.set_field_text(2, "text", "blurry")
    graph.set_field_int(4, "seed", 42)
    graph.set_field_text(4, "sampler_name", "euler")
    graph.set_field_text(4, "scheduler", "karras")

    project.connect(0, 0, 4, 0)   # MODEL → model
    project.connect(0, 1, 1, 0)   # CLIP → clip
    project.connect(0, 1, 2, 0)
    project.connect(1, 0, 4, 1)   # positive
    project.connect(2, 0, 4, 2)   # negative
    project.connect(3, 0, 4, 3)   # latent_image
    project.connect(4, 0, 5, 0)   # samples
    project.connect(0, 2, 5, 1)   # VAE → vae
    project.connect(5, 0, 6, 0)   # images
    return project


@pytest.fixture
def txt2img(schemas):
    return build_txt2img(schemas)


class FakeEngine:
    """Stands in for ComfyClient; records what it was asked to do."""

    def __init__(self, object_info=None, history=None):
        self.object_info = object_info
        self.history = history or {}
        self.submitted = []
        self.fetched = []

    def fetch_object_info(self):
        return self.object_info

    def submit_prompt(self, prompt):
        self.submitted.append(prompt)
        return {"prompt_id": "p-1", "number": len(self.submitted), "node_errors": {}}

    def fetch_history(self, prompt_id):
        return self.history

    def image_url(self, filename, subfolder="", image_type="temp"):
        return f"http://engine/view?filename={filename}&type={image_type}"

    def fetch_image(self, reference):
        self.fetched.append(reference)
        return np.zeros((4, 4, 3), dtype=np.uint8)


@pytest.fixture
def fake_engine(object_info):
    return FakeEngine(object_info)
