# tests/test_refs.py
"""Tests for reference parsing and resolution."""

import pytest

from pipedag.context import Artifact, ExecutionContext, ExecutionProgress
from pipedag.errors import ReferenceResolutionError, ReferenceSyntaxError
from pipedag.refs import (
    ReferenceType,
    extract_references,
    get_path,
    has_variable_root,
    is_identifier,
    is_reserved_root,
    parse_reference,
    referenced_steps,
    replace_references,
    resolve_reference,
    resolve_references,
    uses_prev,
    validate_reference,
)


def make_context(artifacts=None, variables=None):
    context = ExecutionContext(
        plan_id="plan-1",
        progress=ExecutionProgress(total_steps=0),
        variables=variables or {},
    )
    for artifact in artifacts or []:
        context.add_artifact(artifact)
    return context


@pytest.fixture
def context():
    """Context with two step artifacts and two inputs."""
    return make_context(
        artifacts=[
            Artifact(id="base", step_id="base", value={"url": "a.png", "images": ["x.png", "y.png"]},
                     created_at=1.0),
            Artifact(id="caption", step_id="caption", value={"text": "hello"}, created_at=2.0),
        ],
        variables={"prompt": "a cat", "style": {"palette": ["red", "blue"]}},
    )


class TestParseReference:
    """Test the reference grammar."""

    def test_input_reference(self):
        """Test $input.<name>."""
        ref = parse_reference("$input.prompt")
        assert ref.type is ReferenceType.INPUT
        assert ref.source == "prompt"
        assert ref.path == ()

    def test_step_reference_with_path(self):
        """Test step reference with nested and numeric segments."""
        ref = parse_reference("$base.images.0.url")
        assert ref.type is ReferenceType.STEP
        assert ref.source == "base"
        assert ref.path == ("images", "0", "url")
        assert ref.path_str == "images.0.url"

    def test_prev_reference(self):
        """Test $prev."""
        ref = parse_reference("$prev.url")
        assert ref.type is ReferenceType.PREV
        assert ref.path == ("url",)

    def test_variable_reference(self):
        """Test $var.<name>.<path>."""
        ref = parse_reference("$var.style.palette")
        assert ref.type is ReferenceType.VARIABLE
        assert ref.source == "style"
        assert ref.path == ("palette",)

    def test_asset_roots(self):
        """Test asset roots are recognised but asset-prefixed step ids are not."""
        assert parse_reference("$asset.logo").type is ReferenceType.ASSET
        assert parse_reference("$asset1").type is ReferenceType.ASSET
        assert parse_reference("$asset_bg.src").type is ReferenceType.ASSET
        assert parse_reference("$assetizer.out").type is ReferenceType.STEP

    def test_reference_ending_in_name(self):
        """Test parsing stops at the end of a trailing name."""
        assert parse_reference("$A.output").path == ("output",)
        assert parse_reference("$prev").path == ()
        assert parse_reference("$base").source == "base"
        assert parse_reference("$input.prompt").source == "prompt"
        assert validate_reference("$asset.logo")

    def test_hyphenated_step_id(self):
        """Test step ids may contain hyphens."""
        ref = parse_reference("$remove-bg.url")
        assert ref.source == "remove-bg"

    @pytest.mark.parametrize("raw", [
        "$",
        "$input",
        "$var",
        "$5 off",
        "$a..b",
        "$a.b c",
        "$a.1x",
        "$a.",
        "input.prompt",
    ])
    def test_malformed(self, raw):
        """Test malformed references raise ReferenceSyntaxError."""
        with pytest.raises(ReferenceSyntaxError):
            parse_reference(raw)
        assert not validate_reference(raw)

    def test_syntax_error_position(self):
        """Test syntax errors report where parsing stopped."""
        with pytest.raises(ReferenceSyntaxError) as exc_info:
            parse_reference("$a.b c")
        assert exc_info.value.position == 4

    def test_validate_reference(self):
        """Test validate_reference is syntax-only."""
        assert validate_reference("$nosuchstep.output")


class TestResolveReference:
    """Test resolving references against execution state."""

    def test_input(self, context):
        """Test input lookup."""
        assert resolve_reference("$input.prompt", context) == "a cat"

    def test_missing_input(self, context):
        """Test missing input raises a descriptive error."""
        with pytest.raises(ReferenceResolutionError, match="Input not found: nope"):
            resolve_reference("$input.nope", context)

    def test_variable_path(self, context):
        """Test variable lookup with list index."""
        assert resolve_reference("$var.style.palette.1", context) == "blue"

    def test_step_artifact(self, context):
        """Test step artifact lookup."""
        assert resolve_reference("$base.url", context) == "a.png"
        assert resolve_reference("$base.images.1", context) == "y.png"
        assert resolve_reference("$base", context) == context.artifacts["base"].value

    def test_missing_step_artifact(self, context):
        """Test missing step artifact raises."""
        with pytest.raises(ReferenceResolutionError, match="step artifact not found: later"):
            resolve_reference("$later.url", context)

    def test_missing_key(self, context):
        """Test missing path key raises."""
        with pytest.raises(ReferenceResolutionError, match="key 'nope' not found"):
            resolve_reference("$base.nope", context)

    def test_index_out_of_range(self, context):
        """Test list index past the end raises."""
        with pytest.raises(ReferenceResolutionError, match="out of range"):
            resolve_reference("$base.images.5", context)

    def test_named_segment_on_list(self, context):
        """Test a non-numeric segment on a list raises."""
        with pytest.raises(ReferenceResolutionError, match="not a list index"):
            resolve_reference("$base.images.first", context)

    def test_prev_uses_latest_artifact(self, context):
        """Test $prev resolves to the most recently created artifact."""
        assert resolve_reference("$prev.text", context) == "hello"

    def test_prev_tie_goes_to_later_insertion(self):
        """Test artifacts created at the same time resolve to the later one."""
        context = make_context(artifacts=[
            Artifact(id="a", step_id="a", value="first", created_at=5.0),
            Artifact(id="b", step_id="b", value="second", created_at=5.0),
        ])
        assert resolve_reference("$prev", context) == "second"

    def test_prev_without_artifacts(self):
        """Test $prev before any step has produced an artifact."""
        with pytest.raises(ReferenceResolutionError, match="no previous step artifact"):
            resolve_reference("$prev.url", make_context())

    def test_asset_passthrough(self, context):
        """Test asset references are returned unchanged."""
        assert resolve_reference("$asset.logo", context) == "$asset.logo"


class TestResolveReferences:
    """Test recursive resolution over input trees."""

    def test_nested(self, context):
        """Test references inside dicts and lists are resolved."""
        tree = {
            "prompt": "$input.prompt",
            "images": ["$base.url", {"caption": "$caption.text"}],
            "width": 512,
            "label": "plain",
        }
        assert resolve_references(tree, context) == {
            "prompt": "a cat",
            "images": ["a.png", {"caption": "hello"}],
            "width": 512,
            "label": "plain",
        }

    def test_does_not_mutate(self, context):
        """Test the input tree is left untouched."""
        tree = {"a": ["$input.prompt"]}
        resolve_references(tree, context)
        assert tree == {"a": ["$input.prompt"]}

    def test_malformed_passthrough(self, context):
        """Test $-strings outside the grammar are kept literally."""
        assert resolve_references({"price": "$5 off"}, context) == {"price": "$5 off"}

    @pytest.mark.parametrize("raw", ["$input", "$var", "$input."])
    def test_unnamed_variable_is_fatal(self, context, raw):
        """Test $input and $var without a name raise instead of passing through."""
        with pytest.raises(ReferenceResolutionError, match="requires a name|expected a name"):
            resolve_references({"x": raw}, context)

    def test_failure_propagates(self, context):
        """Test a well-formed but unresolvable reference raises."""
        with pytest.raises(ReferenceResolutionError):
            resolve_references({"x": ["$missing.url"]}, context)


class TestReferenceHelpers:
    """Test static reference helpers."""

    def test_extract_references_dedup_order(self):
        """Test references are deduplicated in first-seen order."""
        tree = {"a": "$b.x", "c": ["$input.p", "$b.x", {"d": "$prev"}], "e": "text"}
        assert extract_references(tree) == ["$b.x", "$input.p", "$prev"]

    def test_referenced_steps(self):
        """Test only step references count as step dependencies."""
        tree = {"a": "$base.url", "b": "$input.p", "c": "$prev", "d": "$asset.x", "e": "$base.w"}
        assert referenced_steps(tree) == ["base"]

    def test_uses_prev(self):
        """Test $prev detection."""
        assert uses_prev({"a": ["$prev.url"]})
        assert not uses_prev({"a": "$base.url"})

    def test_replace_references(self):
        """Test static substitution."""
        tree = {"a": "$x.y", "b": ["$z", "keep"]}
        assert replace_references(tree, {"$x.y": 1}) == {"a": 1, "b": ["$z", "keep"]}

    def test_get_path_on_scalar(self):
        """Test walking into a scalar raises."""
        with pytest.raises(ReferenceResolutionError, match="cannot access"):
            get_path(5, ("x",), "$a.x")

    def test_identifier_rules(self):
        """Test which names can be used as reference roots."""
        assert is_identifier("remove-bg")
        assert is_identifier("_tmp2")
        assert not is_identifier("3d")
        assert not is_identifier("my step")
        assert not is_identifier("")

    def test_reserved_roots(self):
        """Test roots that never name a step."""
        assert is_reserved_root("input")
        assert is_reserved_root("prev")
        assert is_reserved_root("asset_bg")
        assert not is_reserved_root("assetizer")
        assert has_variable_root("$input")
        assert has_variable_root("$var.x")
        assert not has_variable_root("$inputs.x")
