# tests/test_draft.py
"""Tests for draft mode overrides."""

import pytest

from pipedag.draft import DEFAULT_FAST_MODELS, DraftOptions, apply_draft_overrides


class TestApplyDraftOverrides:
    """Test apply_draft_overrides."""

    def test_sizes_and_steps_scaled(self):
        """Test width/height and step fields are scaled and floored."""
        inputs = {"width": 1023, "height": 768, "num_inference_steps": 25, "prompt": "cat"}
        draft = apply_draft_overrides("imageGen.flux", inputs, DraftOptions())

        assert draft == {"width": 511, "height": 384, "num_inference_steps": 12, "prompt": "cat"}

    def test_minimum_of_one(self):
        """Test scaled values never drop below 1."""
        draft = apply_draft_overrides("p.x", {"width": 1, "steps": 1}, DraftOptions(size_reduction=0.1))
        assert draft["width"] == 1
        assert draft["steps"] == 1

    def test_non_numeric_left_alone(self):
        """Test non-numeric size values are not touched."""
        draft = apply_draft_overrides("p.x", {"width": "auto", "steps": True}, DraftOptions())
        assert draft == {"width": "auto", "steps": True}

    def test_original_not_mutated(self):
        """Test overrides apply to a copy."""
        inputs = {"width": 1024, "model": "flux-pro"}
        apply_draft_overrides("imageGen.flux", inputs, DraftOptions())
        assert inputs == {"width": 1024, "model": "flux-pro"}

    def test_model_substitution(self):
        """Test known models are swapped for their fast variants."""
        draft = apply_draft_overrides("imageGen.flux", {"model": "flux-dev"}, DraftOptions())
        assert draft["model"] == "flux-schnell"

    def test_unknown_model_kept(self):
        """Test models without a fast variant are kept."""
        draft = apply_draft_overrides("imageGen.flux", {"model": "custom"}, DraftOptions())
        assert draft["model"] == "custom"

    def test_provider_fallback_lookup(self):
        """Test the provider id is used when no model input is given."""
        options = DraftOptions(fast_models={"imageGen.flux": "flux-schnell"})
        draft = apply_draft_overrides("imageGen.flux", {"prompt": "cat"}, options)
        assert draft["model"] == "flux-schnell"

    def test_faster_models_disabled(self):
        """Test use_faster_models=False keeps the model."""
        options = DraftOptions(use_faster_models=False)
        draft = apply_draft_overrides("imageGen.flux", {"model": "flux-pro", "width": 100}, options)
        assert draft == {"model": "flux-pro", "width": 50}

    @pytest.mark.parametrize("options", [None, DraftOptions(enabled=False)])
    def test_no_overrides(self, options):
        """Test nothing changes without an enabled profile."""
        inputs = {"width": 1024, "model": "flux-pro"}
        draft = apply_draft_overrides("imageGen.flux", inputs, options)

        assert draft == inputs
        assert draft is not inputs


class TestDraftOptions:
    """Test DraftOptions."""

    @pytest.mark.parametrize("value", [0, -0.5, 1.5])
    def test_invalid_reduction(self, value):
        """Test reductions must lie in (0, 1]."""
        with pytest.raises(ValueError):
            DraftOptions(size_reduction=value)

    def test_from_dict_merges_fast_models(self):
        """Test configured fast models extend the defaults."""
        options = DraftOptions.from_dict({"size_reduction": 0.25, "fast_models": {"sd3": "sd3-turbo"}})

        assert options.size_reduction == 0.25
        assert options.fast_models["sd3"] == "sd3-turbo"
        assert options.fast_models["sdxl"] == DEFAULT_FAST_MODELS["sdxl"]
        assert DraftOptions.from_dict(options.to_dict()) == options
