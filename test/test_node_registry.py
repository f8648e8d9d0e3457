import logging

import pytest

from comfygraph.core.NodeField import (
    BoolInput,
    Connection,
    FieldState,
    FloatInput,
    IntInput,
    Select,
    StringInput,
    Unknown,
)
from comfygraph.core.Types import DEFAULT_STEP, INT_MAX, INT_MIN
from comfygraph.noderegistry.NodeRegistry import (
    SchemaError,
    classify_input,
    load_schemas,
    parse,
    placeholder_schemas,
)


class TestClassifyInput:

    @pytest.mark.parametrize("params", [
        {"default": 20, "min": 1, "max": 10000},
        {"default": 0, "min": -5, "max": 5, "step": 1},
        {"default": 512, "min": 16, "max": 8192, "step": 8},
        {"default": -3, "min": -10, "max": 0, "step": 2},
    ])
    def test_int_bounds_and_default_state(self, params):
        schema = classify_input("K.f", ["INT", params])
        assert isinstance(schema, IntInput)
        assert schema.default == params["default"]
        assert schema.min == params["min"]
        assert schema.max == params["max"]
        assert schema.step == params.get("step", DEFAULT_STEP)
        assert FieldState.from_schema(schema).value == params["default"]

    def test_int_fallbacks(self):
        schema = classify_input("K.f", ["INT", {"default": 4}])
        assert schema.min == INT_MIN
        assert schema.max == INT_MAX
        assert schema.step == DEFAULT_STEP

    def test_float(self):
        schema = classify_input("K.cfg", ["FLOAT", {"default": 8, "min": 0.0, "max": 100.0, "step": 0.1}])
        assert schema == FloatInput(default=8.0, min=0.0, max=100.0, step=0.1)

    def test_string_and_boolean(self):
        assert classify_input("K.t", ["STRING", {"multiline": True}]) == StringInput(default=None, multiline=True)
        assert classify_input("K.t", ["STRING", {"default": "ComfyUI"}]) == StringInput(default="ComfyUI")
        assert classify_input("K.b", ["BOOLEAN", {"default": True}]) == BoolInput(default=True)

    def test_select(self):
        assert classify_input("K.s", [["euler", "ddim"]]) == Select(options=("euler", "ddim"))

    def test_select_with_params(self):
        schema = classify_input("K.s", [["a", "b"], {"default": "b"}])
        assert schema == Select(options=("a", "b"), default="b")

    def test_select_drops_non_string_options(self):
        assert classify_input("K.s", [["a", 3, None]]).options == ("a",)

    def test_combo_is_a_select(self):
        schema = classify_input("K.s", ["COMBO", {"options": ["a", "b"], "default": "a"}])
        assert schema == Select(options=("a", "b"), default="a")
        assert not schema.is_connection()

    @pytest.mark.parametrize("params", [{}, {"options": "a,b"}, None])
    def test_combo_without_options(self, params):
        with pytest.raises(SchemaError):
            classify_input("K.s", ["COMBO", params])

    def test_connection(self):
        assert classify_input("K.m", ["MODEL"]) == Connection("MODEL")

    def test_connection_with_options(self):
        assert classify_input("K.m", ["MODEL", {"tooltip": "the model"}]) == Connection("MODEL")

    @pytest.mark.parametrize("descriptor", [[42], [None], [3, {}], [{"x": 1}, {}]])
    def test_unknown_shapes(self, descriptor):
        assert isinstance(classify_input("K.u", descriptor), Unknown)

    @pytest.mark.parametrize("descriptor", [
        "MODEL",
        {"type": "INT"},
        [],
        ["INT", {"default": 1}, "extra"],
    ])
    def test_unexpected_shapes(self, descriptor):
        with pytest.raises(SchemaError) as info:
            classify_input("KSampler.seed", descriptor)
        assert info.value.path == "KSampler.seed"

    @pytest.mark.parametrize("descriptor", [
        ["INT", {"min": 0}],
        ["INT", {"default": "3"}],
        ["INT", {"default": 3, "max": "big"}],
        ["FLOAT", {"default": True}],
        ["FLOAT", "0.5"],
        ["BOOLEAN", {}],
        ["BOOLEAN", {"default": 1}],
        ["STRING", {"default": 5}],
    ])
    def test_malformed_parameters(self, descriptor):
        with pytest.raises(SchemaError) as info:
            classify_input("Node.field", descriptor)
        assert info.value.path == "Node.field"
        assert isinstance(info.value, ValueError)


class TestParse:

    def test_inputs_fields_and_outputs(self, object_info):
        schemas = parse(object_info)
        ksampler = schemas["KSampler"]
        assert list(ksampler.inputs.items()) == [
            ("model", "MODEL"),
            ("positive", "CONDITIONING"),
            ("negative", "CONDITIONING"),
            ("latent_image", "LATENT"),
        ]
        assert list(ksampler.fields) == ["seed", "steps", "cfg", "sampler_name", "scheduler", "denoise"]
        assert ksampler.outputs == [("LATENT", "LATENT")]
        assert ksampler.category == "sampling"

    def test_output_names_zip_with_types(self, object_info):
        loader = parse(object_info)["CheckpointLoaderSimple"]
        assert loader.outputs == [("MODEL", "MODEL"), ("CLIP", "CLIP"), ("VAE", "VAE")]
        assert loader.display_name == "Load Checkpoint"

    def test_hidden_inputs_ignored(self, object_info):
        save = parse(object_info)["SaveImage"]
        assert list(save.inputs) == ["images"]
        assert list(save.fields) == ["filename_prefix"]
        assert save.output_node is True

    def test_optional_after_required(self):
        raw = {
            "K": {
                "input": {
                    "required": {"a": ["INT", {"default": 1}]},
                    "optional": {"mask": ["MASK"], "b": ["STRING", {}]},
                },
                "output": [],
            }
        }
        schema = parse(raw)["K"]
        assert list(schema.fields) == ["a", "b"]
        assert list(schema.inputs) == ["mask"]

    def test_output_name_defaults_to_types(self):
        schema = parse({"K": {"input": {"required": {}}, "output": ["IMAGE", "MASK"]}})["K"]
        assert schema.outputs == [("IMAGE", "IMAGE"), ("MASK", "MASK")]
        assert schema.display_name == "K"

    def test_mismatched_outputs_rejected(self):
        raw = {"K": {"input": {}, "output": ["IMAGE", "MASK"], "output_name": ["IMAGE"]}}
        with pytest.raises(SchemaError) as info:
            parse(raw)
        assert info.value.path == "K.output"

    def test_one_bad_field_rejects_the_batch(self, object_info):
        object_info["EmptyLatentImage"]["input"]["required"]["width"] = ["INT", {"min": 16}]
        with pytest.raises(SchemaError) as info:
            parse(object_info)
        assert info.value.path == "EmptyLatentImage.width"

    def test_non_mapping_entries(self):
        with pytest.raises(SchemaError):
            parse({"K": ["not", "an", "object"]})
        with pytest.raises(SchemaError):
            parse({"K": {"input": ["x"]}})
        with pytest.raises(SchemaError):
            parse(["K"])

    def test_search_string(self, object_info):
        text = parse(object_info)["SaveImage"].search_string()
        assert "Save Image" in text
        assert "SaveImage" in text
        assert "image" in text


class TestFallback:

    def test_placeholder_set(self):
        schemas = placeholder_schemas()
        assert list(schemas) == [f"A{i}" for i in range(20)]
        a0 = schemas["A0"]
        assert list(a0.inputs.items()) == [("Text", "TXT"), ("Image", "IMG")]
        assert a0.outputs == [("Text", "TXT"), ("Image", "IMG")]
        assert a0.category == "Dummy"
        assert a0.fields == {}

    def test_load_uses_fetched_descriptor(self, object_info):
        schemas = load_schemas(lambda: object_info)
        assert "KSampler" in schemas

    def test_load_without_engine(self, caplog):
        with caplog.at_level(logging.WARNING):
            schemas = load_schemas(lambda: None)
        assert list(schemas) == list(placeholder_schemas())
        assert "placeholder" in caplog.text

    def test_load_rejected_descriptor(self, object_info, caplog):
        object_info["KSampler"]["input"]["required"]["seed"] = ["INT", {}, {}]
        with caplog.at_level(logging.ERROR):
            schemas = load_schemas(lambda: object_info)
        assert "KSampler" not in schemas
        assert "KSampler.seed" in caplog.text
