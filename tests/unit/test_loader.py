"""Unit tests for the JSON program loader."""

import json

import pytest
from pydantic import ValidationError

from provlog.engine import Context, ProgramLoader, ProgramSpec
from provlog.errors import SchemaRedeclarationError
from provlog.values import ValueType


GRAPH = {
    "relations": [{"name": "edge", "types": ["i32", "i32"]}],
    "facts": [
        {"relation": "edge", "values": [0, 1], "tag": 0.9},
        {"relation": "edge", "values": [1, 2], "tag": 0.8},
    ],
    "rules": [
        "path(a, b) = edge(a, b)",
        {"name": "step", "rule": "path(a, c) = path(a, b), edge(b, c)"},
    ],
    "queries": ["path"],
}


@pytest.fixture
def context():
    return Context("minmaxprob")


class TestProgramLoader:
    """Test loading from the supported sources."""

    def test_load_dict(self, context):
        stats = ProgramLoader.load(context, GRAPH)
        assert stats == {"relations": 1, "rules": 2, "facts": 2, "queries": 1}

        context.run()
        path = {v: t for t, v in context.computed_relation("path")}
        assert path[(0, 2)] == pytest.approx(0.8)
        assert context.queries == ["path"]

    def test_load_json_string(self, context):
        ProgramLoader.load(context, json.dumps(GRAPH))
        context.run()
        assert len(list(context.computed_relation("path"))) == 3

    def test_load_file(self, context, tmp_path):
        path = tmp_path / "graph.json"
        path.write_text(json.dumps(GRAPH), encoding="utf-8")

        ProgramLoader.load(context, path)
        ProgramLoader.load(Context("unit"), str(path))
        assert context.schema("edge").types == (ValueType.I32, ValueType.I32)

    def test_missing_file(self, context, tmp_path):
        with pytest.raises(FileNotFoundError):
            ProgramLoader.load(context, tmp_path / "missing.json")

    def test_named_rules(self, context):
        ProgramLoader.load(context, GRAPH)
        assert [rule.name for rule in context.rules] == [None, "step"]

    def test_program_text_section(self, context):
        ProgramLoader.load(
            context,
            {
                "program": "rel edge = {0.5::(0, 1)}\nrel path(a, b) = edge(a, b)",
                "facts": [{"relation": "edge", "values": [1, 2], "tag": 0.4}],
            },
        )
        context.run()
        assert {v for _, v in context.computed_relation("path")} == {(0, 1), (1, 2)}

    def test_untyped_relation_by_arity(self, context):
        ProgramLoader.load(context, {"relations": [{"name": "pair", "arity": 2}]})
        assert context.schema("pair").arity == 2


class TestValueConversion:
    """JSON arrays become tuples."""

    def test_list_tag_becomes_tuple(self):
        ctx = Context("topkproofsdebug")
        ProgramLoader.load(
            ctx,
            {"facts": [{"relation": "fact", "values": ["a"], "tag": [0.5, 1]}]},
        )
        ctx.run()
        (((probability, proofs), values),) = list(ctx.computed_relation("fact"))
        assert values == ("a",)
        assert probability == pytest.approx(0.5)
        assert proofs == ((1,),)


class TestValidation:
    """Invalid documents are rejected before anything is added."""

    def test_relation_without_shape(self, context):
        with pytest.raises(ValidationError):
            ProgramLoader.load(context, {"relations": [{"name": "edge"}]})
        assert context.relation_names() == []

    def test_types_and_arity_disagree(self):
        with pytest.raises(ValidationError):
            ProgramSpec.model_validate({"relations": [{"name": "e", "types": ["i32"], "arity": 2}]})

    def test_empty_rule_text(self):
        with pytest.raises(ValidationError):
            ProgramSpec.model_validate({"rules": [""]})

    def test_wrong_field_type(self):
        with pytest.raises(ValidationError):
            ProgramSpec.model_validate({"queries": "path"})

    def test_context_errors_propagate(self, context):
        context.add_relation("edge", ["String", "String"])
        with pytest.raises(SchemaRedeclarationError):
            ProgramLoader.load(context, GRAPH)
