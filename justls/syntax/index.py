"""
justls.syntax.index - Symbol index over parsed justfile definitions

Maps recipe and variable names to every node that defines them, in
declaration order. Duplicate definitions are kept so navigation can offer
all of them.
"""

from dataclasses import dataclass, field

from justls.syntax.parser import Definition, ParseResult, Recipe


@dataclass
class SymbolIndex:
    """Name -> definitions lookup tables for one parse result."""

    recipes: dict[str, list[Definition]] = field(default_factory=dict)
    variables: dict[str, list[Definition]] = field(default_factory=dict)

    def lookup_recipe(self, name: str) -> list[Definition]:
        return self.recipes.get(name, [])

    def lookup_variable(self, name: str) -> list[Definition]:
        return self.variables.get(name, [])


def build_index(result: ParseResult) -> SymbolIndex:
    """Build a SymbolIndex from a parse result, skipping nameless nodes."""
    index = SymbolIndex()
    for node in result.nodes:
        name = node.name.text(result.data)
        if not name:
            continue
        table = index.recipes if isinstance(node, Recipe) else index.variables
        table.setdefault(name, []).append(node)
    return index
