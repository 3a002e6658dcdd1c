# itfstack/ir_types.py
# Generic parse tree produced by the grammar parser. Nothing here knows what
# a conductor or a width axis is; builder.py gives the nodes their meaning.
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

Loc = Tuple[int, int]  # (line, column), 1-based


@dataclass
class ValueNode:
    kind: str  # NUMBER | IDENTIFIER | STRING
    text: str
    loc: Loc


@dataclass
class AssignmentNode:
    key: str
    value: ValueNode
    loc: Loc


@dataclass
class GridSection:
    label: Optional[str]  # None for tuples/bare numbers written directly in the table
    rows: List[List[float]] = field(default_factory=list)
    loc: Loc = (0, 0)


@dataclass
class TableNode:
    name: str
    modifiers: List[str]
    sections: List[GridSection]
    loc: Loc

    def section(self, *labels: str) -> Optional[GridSection]:
        """First section whose label matches one of ``labels`` (case-insensitive)."""
        wanted = {x.upper() for x in labels}
        for sec in self.sections:
            if sec.label is not None and sec.label.upper() in wanted:
                return sec
        return None


@dataclass
class BlockNode:
    keyword: str
    name: str
    entries: List[Union[AssignmentNode, TableNode]]
    loc: Loc


Statement = Union[AssignmentNode, BlockNode, TableNode]


@dataclass
class ParseTree:
    statements: List[Statement] = field(default_factory=list)
    # (name, loc) of CONDUCTOR/DIELECTRIC blocks dropped for syntax errors
    dropped_layers: List[Tuple[str, Loc]] = field(default_factory=list)
