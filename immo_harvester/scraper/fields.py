"""Immo Harvester — Field Extraction Engine.

Resolves declarative field specs against parsed markup. A spec reads

    <css selector>[@<attribute>] [| <transform>]*

for example ``a[data-testid="card-link"]@href`` or
``div.price | removeNewline | trim``. Specs are compiled once, when a
provider class is defined, so an unknown transform fails at import
rather than silently dropping a field on every page.

Uses selectolax (HTMLParser) for parsing and CSS matching.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Union

from selectolax.parser import HTMLParser, Node

from immo_harvester.errors import FieldSpecError

_ATTRIBUTE_RE = re.compile(r"^[A-Za-z_:][-\w:.]*$")
_WHITESPACE_RE = re.compile(r"\s+")

# ── Transform Registry ────────────────────────────────────
TRANSFORMS: dict[str, Callable[[str], str]] = {
    "trim": str.strip,
    "remove_newline": lambda value: value.replace("\r", "").replace("\n", ""),
    "collapse_whitespace": lambda value: _WHITESPACE_RE.sub(" ", value),
    "lower": str.lower,
    "upper": str.upper,
}

_TRANSFORM_ALIASES = {
    "removeNewline": "remove_newline",
    "collapseWhitespace": "collapse_whitespace",
    "toLowerCase": "lower",
    "toUpperCase": "upper",
}


@dataclass(frozen=True)
class FieldSpec:
    """A compiled field spec.

    Attributes:
        name: Output field name.
        selector: CSS selector; the first match is used.
        attribute: Attribute to read instead of text content, if any.
        transforms: Transform names applied in order.
    """

    name: str
    selector: str
    attribute: Optional[str] = None
    transforms: tuple[str, ...] = ()

    def apply(self, value: str) -> str:
        for transform in self.transforms:
            value = TRANSFORMS[transform](value)
        return value


# ═══════════════════════════════════════════════════════════
# Compilation
# ═══════════════════════════════════════════════════════════


def _split_outside_brackets(text: str, separator: str) -> list[int]:
    """Positions of ``separator`` that are outside [...] and quotes."""
    positions: list[int] = []
    depth = 0
    quote: Optional[str] = None
    for index, char in enumerate(text):
        if quote:
            if char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif char == "[":
            depth += 1
        elif char == "]":
            depth = max(0, depth - 1)
        elif char == separator and depth == 0:
            positions.append(index)
    return positions


def compile_field(name: str, spec: str) -> FieldSpec:
    """Compile a single field spec string.

    Raises:
        FieldSpecError: If the selector is empty or a transform is unknown.
    """
    pipes = _split_outside_brackets(spec, "|")
    bounds = [-1, *pipes, len(spec)]
    parts = [spec[bounds[i] + 1:bounds[i + 1]].strip() for i in range(len(bounds) - 1)]
    selector_part, transform_names = parts[0], parts[1:]

    attribute = None
    at_positions = _split_outside_brackets(selector_part, "@")
    if at_positions:
        last = at_positions[-1]
        candidate = selector_part[last + 1:].strip()
        if _ATTRIBUTE_RE.match(candidate):
            attribute = candidate
            selector_part = selector_part[:last].strip()

    if not selector_part:
        raise FieldSpecError(name, "empty selector")

    transforms = []
    for raw in transform_names:
        if not raw:
            raise FieldSpecError(name, "empty transform in pipe chain")
        transform = _TRANSFORM_ALIASES.get(raw, raw)
        if transform not in TRANSFORMS:
            raise FieldSpecError(name, f"unknown transform '{raw}'")
        transforms.append(transform)

    return FieldSpec(
        name=name,
        selector=selector_part,
        attribute=attribute,
        transforms=tuple(transforms),
    )


def compile_fields(mapping: Mapping[str, str]) -> dict[str, FieldSpec]:
    """Compile a mapping of field name → spec string."""
    return {name: compile_field(name, spec) for name, spec in mapping.items()}


# ═══════════════════════════════════════════════════════════
# Extraction
# ═══════════════════════════════════════════════════════════


def _resolve(node: Union[HTMLParser, Node], spec: FieldSpec) -> Optional[str]:
    match = node.css_first(spec.selector)
    if match is None:
        return None
    if spec.attribute:
        value = match.attributes.get(spec.attribute)
        if value is None:
            return None
    else:
        value = match.text()
    return spec.apply(value)


def extract(
    node: Union[HTMLParser, Node, str],
    specs: Mapping[str, FieldSpec],
) -> dict[str, Optional[str]]:
    """Resolve every field against a document or node.

    Missing nodes and missing attributes yield None; they are never errors.

    Args:
        node: Parsed document, a node within it, or raw markup.
        specs: Compiled field specs from compile_fields().

    Returns:
        Mapping of field name to extracted value (or None).
    """
    if isinstance(node, str):
        node = HTMLParser(node)
    return {name: _resolve(node, spec) for name, spec in specs.items()}


def extract_items(
    html: str,
    container: str,
    specs: Mapping[str, FieldSpec],
) -> list[dict[str, Optional[str]]]:
    """Extract one record per container match, in document order."""
    if not html:
        return []
    tree = HTMLParser(html)
    return [extract(item, specs) for item in tree.css(container)]
