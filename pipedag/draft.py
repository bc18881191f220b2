# pipedag/draft.py
"""
Draft mode overrides.

A draft profile trades output fidelity for speed: smaller output sizes,
fewer inference steps and faster model variants. Overrides are applied to
a shallow copy of a step's resolved inputs, never to the step itself.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SIZE_FIELDS = ("width", "height")
STEP_FIELDS = ("steps", "num_steps", "num_inference_steps", "inference_steps")

# Model family -> fast variant
DEFAULT_FAST_MODELS: Dict[str, str] = {
    "flux-pro": "flux-schnell",
    "flux-dev": "flux-schnell",
    "flux-1": "flux-schnell",
    "sdxl": "sdxl-lightning",
}


@dataclass
class DraftOptions:
    """
    Per-run draft profile.

    Attributes:
        enabled: Whether overrides are applied at all
        size_reduction: Factor applied to width/height (0.5 = half size)
        step_reduction: Factor applied to inference step counts
        use_faster_models: Substitute registered fast model variants
        fast_models: Model (or provider id) -> fast variant
    """
    enabled: bool = True
    size_reduction: float = 0.5
    step_reduction: float = 0.5
    use_faster_models: bool = True
    fast_models: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FAST_MODELS))

    def __post_init__(self):
        for name in ("size_reduction", "step_reduction"):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ValueError(f"{name} must be in (0, 1], got {value}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "size_reduction": self.size_reduction,
            "step_reduction": self.step_reduction,
            "use_faster_models": self.use_faster_models,
            "fast_models": dict(self.fast_models),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DraftOptions":
        fast_models = dict(DEFAULT_FAST_MODELS)
        fast_models.update(data.get("fast_models", {}))
        return cls(
            enabled=data.get("enabled", True),
            size_reduction=float(data.get("size_reduction", 0.5)),
            step_reduction=float(data.get("step_reduction", 0.5)),
            use_faster_models=data.get("use_faster_models", True),
            fast_models=fast_models,
        )


def _scale(value: Any, factor: float) -> Any:
    # Leave non-numeric values (e.g. "auto") alone
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    return max(1, math.floor(value * factor))


def apply_draft_overrides(
    provider: str,
    inputs: Dict[str, Any],
    options: Optional[DraftOptions],
) -> Dict[str, Any]:
    """
    Return a copy of inputs with the draft profile applied.

    Args:
        provider: Provider id of the step (used for fast model lookup)
        inputs: Resolved step inputs (not modified)
        options: Draft profile, or None for no overrides

    Returns:
        New dict with overrides applied
    """
    draft = dict(inputs)
    if options is None or not options.enabled:
        return draft

    for name in SIZE_FIELDS:
        if name in draft:
            draft[name] = _scale(draft[name], options.size_reduction)

    for name in STEP_FIELDS:
        if name in draft:
            draft[name] = _scale(draft[name], options.step_reduction)

    if options.use_faster_models:
        model = draft.get("model")
        if isinstance(model, str) and model in options.fast_models:
            draft["model"] = options.fast_models[model]
        elif model is None and provider in options.fast_models:
            draft["model"] = options.fast_models[provider]
        if draft.get("model") != model:
            logger.debug(f"Draft: {provider} model {model} -> {draft['model']}")

    return draft
