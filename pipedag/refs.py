# pipedag/refs.py
"""
Reference parsing and resolution.

Step inputs may contain $-prefixed references that are substituted with
live execution state right before a step runs:

    $input.prompt          caller-supplied input
    $var.style.palette     run variable, with a path
    $base.url              artifact of step "base"
    $base.images.0         numeric segments index lists
    $prev.url              most recently created artifact
    $asset.logo            asset placeholder, passed through untouched

Grammar (recursive descent):

    reference := "$" root ("." segment)*
    root      := IDENT
    segment   := IDENT | INDEX
    IDENT     := [A-Za-z_][A-Za-z0-9_-]*
    INDEX     := [0-9]+

Asset roots are "asset" itself or "asset" followed by a digit, "_" or "-"
(asset1, asset_bg). A step called "assetizer" is still a step.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Tuple

from .errors import ReferenceResolutionError, ReferenceSyntaxError

logger = logging.getLogger(__name__)

PREFIX = "$"


class ReferenceType(Enum):
    INPUT = "input"
    STEP = "step"
    PREV = "prev"
    ASSET = "asset"
    VARIABLE = "variable"


@dataclass(frozen=True)
class Reference:
    """A parsed reference."""
    type: ReferenceType
    source: str
    path: Tuple[str, ...] = ()
    raw: str = ""

    @property
    def path_str(self) -> str:
        return ".".join(self.path)


IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*\Z")

# Roots that never name a step
VARIABLE_ROOTS = ("input", "var")
RESERVED_ROOTS = VARIABLE_ROOTS + ("prev",)


def _is_ident_start(ch: str) -> bool:
    # peek() yields "" at end of input
    return ch != "" and ch.isascii() and (ch.isalpha() or ch == "_")


def _is_ident_char(ch: str) -> bool:
    return ch != "" and ch.isascii() and (ch.isalnum() or ch in "_-")


def _is_asset_root(root: str) -> bool:
    if root == "asset":
        return True
    return root.startswith("asset") and len(root) > 5 and (root[5].isdigit() or root[5] in "_-")


def is_identifier(name: str) -> bool:
    """True if name can appear as a reference root or segment."""
    return isinstance(name, str) and IDENT_RE.match(name) is not None


def is_reserved_root(name: str) -> bool:
    """True for roots with fixed meaning ($input, $var, $prev, assets)."""
    return name in RESERVED_ROOTS or _is_asset_root(name)


def has_variable_root(text: str) -> bool:
    """True for $input... and $var... strings, well-formed or not."""
    if not is_reference_like(text):
        return False
    return text[len(PREFIX):].split(".", 1)[0] in VARIABLE_ROOTS


class _Parser:
    """Single-use recursive-descent parser over one reference string."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def _error(self, reason: str) -> ReferenceSyntaxError:
        return ReferenceSyntaxError(self.text, reason, self.pos)

    def _peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _expect(self, ch: str) -> None:
        if self._peek() != ch:
            found = repr(self._peek()) if self._peek() else "end of input"
            raise self._error(f"expected '{ch}', found {found}")
        self.pos += 1

    def _identifier(self) -> str:
        start = self.pos
        if not _is_ident_start(self._peek()):
            raise self._error("expected a name")
        self.pos += 1
        while _is_ident_char(self._peek()):
            self.pos += 1
        return self.text[start:self.pos]

    def _index(self) -> str:
        start = self.pos
        while self._peek().isascii() and self._peek().isdigit():
            self.pos += 1
        if self._peek() and self._peek() != ".":
            raise self._error("index must be all digits")
        return self.text[start:self.pos]

    def _segment(self) -> str:
        ch = self._peek()
        if ch.isascii() and ch.isdigit():
            return self._index()
        return self._identifier()

    def parse(self) -> Reference:
        self._expect(PREFIX)
        root = self._identifier()
        segments: List[str] = []
        while self.pos < len(self.text):
            self._expect(".")
            segments.append(self._segment())
        return self._classify(root, segments)

    def _classify(self, root: str, segments: List[str]) -> Reference:
        if root in VARIABLE_ROOTS:
            if not segments:
                raise ReferenceSyntaxError(self.text, f"${root} requires a name")
            ref_type = ReferenceType.INPUT if root == "input" else ReferenceType.VARIABLE
            return Reference(ref_type, segments[0], tuple(segments[1:]), self.text)
        if root == "prev":
            return Reference(ReferenceType.PREV, "prev", tuple(segments), self.text)
        if _is_asset_root(root):
            return Reference(ReferenceType.ASSET, root, tuple(segments), self.text)
        return Reference(ReferenceType.STEP, root, tuple(segments), self.text)


def is_reference_like(value: Any) -> bool:
    """True for any string carrying the $ prefix (well-formed or not)."""
    return isinstance(value, str) and value.startswith(PREFIX)


def parse_reference(ref: str) -> Reference:
    """
    Parse a reference string.

    Raises:
        ReferenceSyntaxError: if ref does not match the grammar
    """
    if not is_reference_like(ref):
        raise ReferenceSyntaxError(str(ref), "references start with '$'", 0)
    return _Parser(ref).parse()


def validate_reference(ref: str) -> bool:
    """Syntax check only; no execution state is consulted."""
    try:
        parse_reference(ref)
        return True
    except ReferenceSyntaxError:
        return False


def get_path(value: Any, path: Tuple[str, ...], ref: str = "") -> Any:
    """Walk a dotted path through nested mappings and sequences."""
    current = value
    for key in path:
        if isinstance(current, (list, tuple)):
            if not key.isdigit():
                raise ReferenceResolutionError(ref, f"'{key}' is not a list index")
            index = int(key)
            if index >= len(current):
                raise ReferenceResolutionError(
                    ref, f"index {index} out of range (length {len(current)})"
                )
            current = current[index]
        elif isinstance(current, Mapping):
            if key not in current:
                raise ReferenceResolutionError(ref, f"key '{key}' not found")
            current = current[key]
        else:
            raise ReferenceResolutionError(
                ref, f"cannot access '{key}' of {type(current).__name__}"
            )
    return current


def resolve_reference(ref: str | Reference, context) -> Any:
    """
    Resolve one reference against an ExecutionContext.

    Raises:
        ReferenceSyntaxError: malformed reference
        ReferenceResolutionError: input, artifact or path missing
    """
    reference = ref if isinstance(ref, Reference) else parse_reference(ref)
    raw = reference.raw

    if reference.type is ReferenceType.ASSET:
        # Resolved later by the asset layer
        return raw

    if reference.type in (ReferenceType.INPUT, ReferenceType.VARIABLE):
        if reference.source not in context.variables:
            kind = "Input" if reference.type is ReferenceType.INPUT else "Variable"
            raise ReferenceResolutionError(raw, f"{kind} not found: {reference.source}")
        value = context.variables[reference.source]

    elif reference.type is ReferenceType.PREV:
        artifact = context.latest_artifact()
        if artifact is None:
            raise ReferenceResolutionError(raw, "no previous step artifact exists yet")
        value = artifact.value

    else:
        artifact = context.artifacts.get(reference.source)
        if artifact is None:
            raise ReferenceResolutionError(
                raw, f"step artifact not found: {reference.source}"
            )
        value = artifact.value

    return get_path(value, reference.path, raw)


def resolve_references(tree: Any, context) -> Any:
    """
    Resolve every reference in a nested structure.

    Walks dicts and lists depth-first, left to right, returning a new
    structure. $-strings that do not match the grammar are kept verbatim,
    except $input/$var strings, which must name a variable.

    Raises:
        ReferenceResolutionError: a reference cannot be resolved
    """
    if isinstance(tree, str):
        if not is_reference_like(tree):
            return tree
        try:
            reference = parse_reference(tree)
        except ReferenceSyntaxError as e:
            if has_variable_root(tree):
                raise ReferenceResolutionError(tree, e.reason) from e
            logger.debug(f"Not a reference, passing through: {tree!r}")
            return tree
        return resolve_reference(reference, context)

    if isinstance(tree, dict):
        return {k: resolve_references(v, context) for k, v in tree.items()}

    if isinstance(tree, (list, tuple)):
        return [resolve_references(v, context) for v in tree]

    return tree


def extract_references(tree: Any) -> List[str]:
    """All $-strings in a nested structure, deduplicated, in first-seen order."""
    found: Dict[str, None] = {}

    def walk(value: Any) -> None:
        if is_reference_like(value):
            found.setdefault(value, None)
        elif isinstance(value, dict):
            for v in value.values():
                walk(v)
        elif isinstance(value, (list, tuple)):
            for v in value:
                walk(v)

    walk(tree)
    return list(found)


def replace_references(tree: Any, replacements: Mapping[str, Any]) -> Any:
    """Static substitution of $-strings present in replacements."""
    if is_reference_like(tree):
        return replacements.get(tree, tree)

    if isinstance(tree, dict):
        return {k: replace_references(v, replacements) for k, v in tree.items()}

    if isinstance(tree, (list, tuple)):
        return [replace_references(v, replacements) for v in tree]

    return tree


def parsed_references(tree: Any) -> List[Reference]:
    """Well-formed references found in tree; malformed $-strings are skipped."""
    refs = []
    for raw in extract_references(tree):
        try:
            refs.append(parse_reference(raw))
        except ReferenceSyntaxError:
            continue
    return refs


def referenced_steps(tree: Any) -> List[str]:
    """Step ids referenced by $stepId... references in tree."""
    steps: Dict[str, None] = {}
    for ref in parsed_references(tree):
        if ref.type is ReferenceType.STEP:
            steps.setdefault(ref.source, None)
    return list(steps)


def uses_prev(tree: Any) -> bool:
    return any(ref.type is ReferenceType.PREV for ref in parsed_references(tree))
