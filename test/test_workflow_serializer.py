import json

import pytest

from comfygraph.core.GraphPrimitives import Graph, Link
from comfygraph.core.Project import Project
from comfygraph.serializers.workflow_serializer import (
    CodecError,
    LinkItem,
    Workflow,
    WorkflowNode,
    WorkflowNodeInput,
    WorkflowNodeOutput,
    decode_document,
    dumps,
    encode_document,
    load_document,
    loads,
    save_document,
)


def _node(inputs=0, outputs=0) -> WorkflowNode:
    return WorkflowNode(
        id=0,
        node_type="N",
        inputs=[WorkflowNodeInput(f"in{i}", "TXT") for i in range(inputs)],
        outputs=[WorkflowNodeOutput(f"out{i}", "TXT", [], i) for i in range(outputs)],
    )


class TestLinkItem:

    def test_tuple_adapter(self):
        item = LinkItem.from_tuple([7, 1, 2, 3, 4, "MODEL"])
        assert item.link_id == 7
        assert item.out_node_id == 1
        assert item.out_slot == 2
        assert item.in_node_id == 3
        assert item.in_slot == 4
        assert item.link_type == "MODEL"
        assert item.to_tuple() == [7, 1, 2, 3, 4, "MODEL"]
        assert LinkItem.from_tuple(item.to_tuple()) == item

    @pytest.mark.parametrize("seq", [
        [1, 2, 3, 4, 5],
        [1, 2, 3, 4, 5, "A", 6],
        [1, "2", 3, 4, 5, "A"],
        [1, 2, 3, 4, 5, 6],
        [1, 2, 3, True, 5, "A"],
        {"id": 1},
    ])
    def test_bad_tuples(self, seq):
        with pytest.raises(CodecError):
            LinkItem.from_tuple(seq)

    def test_object_shaped_record(self):
        record = {"id": 4, "origin_id": 1, "origin_slot": 0, "target_id": 2, "target_slot": 1, "type": "CLIP"}
        assert LinkItem.from_record(record) == LinkItem(4, 1, 0, 2, 1, "CLIP")
        with pytest.raises(CodecError):
            LinkItem.from_record({"id": 4})


class TestWorkflowNumbering:

    def test_link_ids_reserved_per_input(self):
        workflow = Workflow()
        first = _node(inputs=2, outputs=1)
        second = _node(inputs=3)
        third = _node()

        assert workflow.add_node(first) == 1
        assert workflow.add_node(second) == 2
        assert workflow.add_node(third) == 3

        assert workflow.last_node_id == 3
        assert workflow.last_link_id == 5
        assert [i.reserved_link for i in first.inputs] == [0, 1]
        assert [i.reserved_link for i in second.inputs] == [2, 3, 4]
        # Unused inputs are not linked.
        assert all(i.link is None for i in first.inputs + second.inputs)

    def test_link_takes_the_reserved_id(self):
        workflow = Workflow()
        workflow.add_node(_node(inputs=1, outputs=1))
        workflow.add_node(_node(inputs=3))

        item = workflow.link(1, 2, 0, 2)

        assert item == LinkItem(3, 1, 0, 2, 2, "TXT")
        assert workflow.get_node(2).inputs[2].link == 3
        assert workflow.get_node(1).outputs[0].links == [3]
        assert workflow.last_link_id == 4

    def test_link_to_unknown_node(self):
        workflow = Workflow()
        workflow.add_node(_node(outputs=1))
        with pytest.raises(CodecError):
            workflow.link(1, 5, 0, 0)

    def test_repeated_saves_number_the_same(self, txt2img, schemas):
        first = encode_document(txt2img.graph, schemas).to_dict()
        second = encode_document(txt2img.graph, schemas).to_dict()
        assert first == second


class TestEncode:

    def test_document_shape(self, txt2img, schemas):
        doc = encode_document(txt2img.graph, schemas).to_dict()

        assert doc["version"] == 0.4
        assert doc["last_node_id"] == 7
        # CLIPTextEncode ×2 (1 each), KSampler (4), VAEDecode (2), SaveImage (1)
        assert doc["last_link_id"] == 9
        assert [n["id"] for n in doc["nodes"]] == [1, 2, 3, 4, 5, 6, 7]
        assert doc["nodes"][0]["pos"] == [20.0, 20.0]
        assert doc["extra"]["ds"] == {"scale": 1.0, "offset": [0.0, 0.0]}

        # KSampler is node 5; its inputs reserved ids 2..5.
        sampler = doc["nodes"][4]
        assert [i["link"] for i in sampler["inputs"]] == [2, 3, 4, 5]
        assert [l for l in doc["links"] if l[3] == 5][0] == [2, 1, 0, 5, 0, "MODEL"]
        loader = doc["nodes"][0]
        assert loader["outputs"][0]["links"] == [2]
        assert sorted(loader["outputs"][1]["links"]) == [0, 1]

    def test_ksampler_gets_control_after_generate(self, txt2img, schemas):
        doc = encode_document(txt2img.graph, schemas).to_dict()
        sampler = doc["nodes"][4]
        assert sampler["type"] == "KSampler"
        assert sampler["widgets_values"] == [42, "fixed", 20, 8.0, "euler", "karras", 1.0]

    def test_other_kinds_untouched(self, txt2img, schemas):
        doc = encode_document(txt2img.graph, schemas).to_dict()
        assert doc["nodes"][3]["widgets_values"] == [512, 512, 1]
        assert doc["nodes"][1]["widgets_values"] == ["a lighthouse at dusk"]

    def test_unset_select_is_null(self, schemas):
        project = Project(schemas)
        project.add_node("CheckpointLoaderSimple")
        doc = encode_document(project.graph, schemas).to_dict()
        assert doc["nodes"][0]["widgets_values"] == [None]
        assert doc["links"] == []


class TestRoundTrip:

    def test_txt2img(self, txt2img, schemas):
        txt2img.graph.set_zoom(0.75)
        txt2img.graph.set_offset(-120.5, 48)
        txt2img.graph.set_node_position(4, 410, 180.25)
        txt2img.graph.set_field_float(4, "denoise", 0.6)

        decoded = decode_document(encode_document(txt2img.graph, schemas), schemas)

        assert decoded == txt2img.graph

    def test_through_json_text(self, txt2img, schemas):
        text = dumps(encode_document(txt2img.graph, schemas))
        assert decode_document(loads(text), schemas) == txt2img.graph

    def test_single_node_with_unset_select(self, schemas):
        project = Project(schemas)
        project.add_node("KSampler")
        project.graph.set_field_option(0, "scheduler", None)
        decoded = decode_document(encode_document(project.graph, schemas).to_dict(), schemas)
        assert decoded == project.graph

    def test_txt_img_links(self, txt_img_schemas):
        project = Project(txt_img_schemas)
        for kind in ("A", "B", "A", "B"):
            project.add_node(kind)
        project.connect(0, 0, 1, 0)
        project.connect(2, 0, 3, 0)
        doc = encode_document(project.graph, txt_img_schemas).to_dict()
        assert doc["links"] == [[0, 1, 0, 2, 0, "TXT"], [1, 3, 0, 4, 0, "TXT"]]
        assert decode_document(doc, txt_img_schemas) == project.graph


class TestDecode:

    def test_foreign_document(self, schemas):
        raw = {
            "last_node_id": 12,
            "last_link_id": 30,
            "nodes": [
                {"id": 9, "type": "EmptyLatentImage", "pos": {"0": 5, "1": 6}, "order": 0, "mode": 0,
                 "outputs": [{"name": "LATENT", "type": "LATENT", "links": [30], "slot_index": 0}],
                 "properties": {"Node name for S&R": "EmptyLatentImage"},
                 "widgets_values": [768, 640, 2]},
                {"id": 12, "type": "KSampler", "pos": [300, 40], "order": 1, "mode": 0,
                 "inputs": [{"name": "latent_image", "type": "LATENT", "link": 30}],
                 "properties": {},
                 "widgets_values": [99, "randomize", 25, 7.5, "ddim", "normal", 0.8]},
            ],
            "links": [{"id": 30, "origin_id": 9, "origin_slot": 0, "target_id": 12, "target_slot": 3,
                       "type": "LATENT"}],
            "groups": [],
            "config": {},
            "extra": {},
            "version": 0.4,
        }

        graph = decode_document(raw, schemas)

        assert [n.node_type for n in graph.nodes] == ["EmptyLatentImage", "KSampler"]
        assert graph.nodes[0].position == (5.0, 6.0)
        assert graph.get_links() == [Link(0, 0, 1, 3, "LATENT")]
        assert graph.get_field(0, "width").value == 768
        sampler = graph.nodes[1]
        assert sampler.get_field("seed").value == 99
        assert sampler.get_field("steps").value == 25
        assert sampler.get_field("cfg").value == 7.5
        assert sampler.get_field("sampler_name").text() == "ddim"
        assert sampler.get_field("denoise").value == 0.8
        assert graph.zoom == 1.0
        assert graph.offset == (0.0, 0.0)

    def test_select_by_index(self, schemas):
        raw = {"nodes": [{"id": 1, "type": "CheckpointLoaderSimple", "pos": [0, 0], "widgets_values": [1]}],
               "links": []}
        graph = decode_document(raw, schemas)
        assert graph.get_field(0, "ckpt_name").text() == "sdxl.safetensors"

    @pytest.mark.parametrize("raw", [
        {},
        {"nodes": "x"},
        {"nodes": [{"id": "1", "type": "KSampler"}]},
        {"nodes": [{"id": 1}]},
        {"nodes": [{"id": 1, "type": "KSampler", "pos": [1]}]},
        {"nodes": [{"id": 1, "type": "KSampler", "pos": [0, 0]}], "links": [[1, 1, 0, 2, 0, "X"]]},
        {"nodes": [{"id": 1, "type": "KSampler", "pos": [0, 0]}], "links": [[1, 1, 0, 1, 0]]},
        {"nodes": [{"id": 1, "type": "A", "pos": [0, 0]}, {"id": 1, "type": "A", "pos": [0, 0]}]},
        {"nodes": [{"id": 1, "type": "A", "pos": [0, 0], "inputs": [{"type": "X"}]}]},
        {"nodes": [], "extra": {"ds": {"scale": "big"}}},
    ])
    def test_malformed_documents(self, raw, schemas):
        with pytest.raises(CodecError):
            decode_document(raw, schemas)

    def test_not_json(self):
        with pytest.raises(CodecError):
            loads("{nodes: ")


class TestFiles:

    def test_save_and_load(self, tmp_path, txt2img, schemas):
        path = tmp_path / "flow.json"

        save_document(path, txt2img.graph, schemas)
        on_disk = json.loads(path.read_text(encoding="utf-8"))

        assert on_disk["links"][0] == [2, 1, 0, 5, 0, "MODEL"]
        assert load_document(path, schemas) == txt2img.graph

    def test_prompt_file_with_embedded_workflow(self, tmp_path, txt2img, schemas):
        document = encode_document(txt2img.graph, schemas).to_dict()
        path = tmp_path / "prompt.json"
        path.write_text(json.dumps({"client_id": "x", "prompt": {}, "extra_data": {
            "extra_pnginfo": {"workflow": document}}}), encoding="utf-8")

        assert load_document(path, schemas) == txt2img.graph

    def test_prompt_file_without_workflow(self):
        with pytest.raises(CodecError):
            loads(json.dumps({"client_id": "x", "prompt": {}}))

    def test_missing_file(self, tmp_path, schemas):
        with pytest.raises(FileNotFoundError):
            load_document(tmp_path / "absent.json", schemas)

    def test_empty_graph_round_trips(self, tmp_path, schemas):
        path = tmp_path / "empty.json"
        save_document(path, Graph(), schemas)
        assert load_document(path, schemas) == Graph()
