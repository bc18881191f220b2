# tests/test_recipe.py
"""Tests for recipe loading and serialization."""

import pytest

from pipedag.recipe import Recipe, RecipeStep

RECIPE_YAML = """
id: product-shot
name: Product shot
version: 1.2
inputs:
  - id: prompt
    type: text
    required: true
  - id: size
    type: number
    defaultValue: 1024
steps:
  - id: base
    provider: imageGen.flux
    operation: generate
    inputs:
      prompt: $input.prompt
      width: $input.size
    retries: 1
  - id: upscaled
    provider: imageEdit.upscaler
    operation: upscale
    timeout: 60000
    cache: false
    inputs:
      image: $base.url
outputs:
  image: $upscaled.url
"""


@pytest.fixture
def recipe():
    return Recipe.from_yaml(RECIPE_YAML)


class TestRecipeLoading:
    """Test parsing recipes."""

    def test_from_yaml(self, recipe):
        assert recipe.id == "product-shot"
        assert recipe.version == "1.2"
        assert recipe.input_ids() == ["prompt", "size"]
        assert recipe.step_ids() == ["base", "upscaled"]

    def test_input_fields(self, recipe):
        """Test required flags and the defaultValue alias."""
        prompt, size = recipe.inputs
        assert prompt.required is True
        assert size.default == 1024

    def test_step_fields(self, recipe):
        base = recipe.get_step("base")
        upscaled = recipe.get_step("upscaled")

        assert base.inputs == {"prompt": "$input.prompt", "width": "$input.size"}
        assert base.retries == 1
        assert base.timeout is None
        assert base.cache is True
        assert upscaled.timeout == 60000
        assert upscaled.cache is False
        assert recipe.get_step("missing") is None

    def test_outputs_mapping(self, recipe):
        """Test outputs given as {id: source} are accepted."""
        assert [(o.id, o.source) for o in recipe.outputs] == [("image", "$upscaled.url")]

    def test_yaml_must_be_mapping(self):
        with pytest.raises(ValueError):
            Recipe.from_yaml("- just\n- a list\n")

    @pytest.mark.parametrize("suffix", [".json", ".yaml"])
    def test_from_file(self, recipe, tmp_path, suffix):
        """Test loading by file extension."""
        path = tmp_path / f"recipe{suffix}"
        if suffix == ".json":
            path.write_text(recipe.to_json())
        else:
            path.write_text(RECIPE_YAML)

        loaded = Recipe.from_file(path)
        assert loaded.to_dict() == recipe.to_dict()


class TestRecipeHash:
    """Test recipe content hashing."""

    def test_hash_survives_serialization(self, recipe):
        assert Recipe.from_json(recipe.to_json()).recipe_hash == recipe.recipe_hash

    def test_hash_changes_with_content(self, recipe):
        changed = recipe.copy()
        changed.steps[0].inputs["width"] = 512
        assert changed.recipe_hash != recipe.recipe_hash
        assert recipe.steps[0].inputs["width"] == "$input.size"

    def test_step_to_dict_omits_unset(self):
        data = RecipeStep(id="a", provider="data.echo", operation="echo").to_dict()
        assert "retries" not in data
        assert "timeout" not in data
        assert data["cache"] is True
