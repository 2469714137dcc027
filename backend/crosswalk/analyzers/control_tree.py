"""Control tree builder.

Turns the flat control list of one framework into an ordered forest by
grouping controls under their parent once and emitting children recursively.
Bad parentage (unknown parent, cross-framework parent, self-parent, cycles)
is reported as a data integrity warning and the affected control becomes a
root, so every input control appears exactly once in the output.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterator, Optional

import structlog

from crosswalk.core.exceptions import report_integrity_issue
from crosswalk.schemas.records import ControlRecord

logger = structlog.get_logger()


@dataclass
class ControlNode:
    """A control together with its ordered children."""

    control: ControlRecord
    children: list["ControlNode"] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.control.id


def _sort_key(control: ControlRecord) -> tuple[int, str]:
    return (control.sort_order, control.code)


class ControlTreeBuilder:
    """Builds control forests for a single framework at a time."""

    def __init__(self):
        self.logger = logger.bind(component="ControlTreeBuilder")

    def build(
        self,
        controls: list[ControlRecord],
        framework_id: Optional[str] = None,
    ) -> list[ControlNode]:
        """Build an ordered forest from a flat list of controls.

        Args:
            controls: All controls of one framework
            framework_id: Framework being built; defaults to the framework of
                the first control. Parents outside it are treated as missing.

        Returns:
            Root nodes ordered by (sort_order, code)
        """
        if not controls:
            return []

        framework_id = framework_id or controls[0].framework_id
        ordered = sorted(controls, key=_sort_key)
        by_id = {c.id: c for c in ordered}

        children_by_parent: dict[str, list[ControlRecord]] = defaultdict(list)
        roots: list[ControlRecord] = []

        for control in ordered:
            parent_id = control.parent_id
            if parent_id is None:
                roots.append(control)
                continue

            if parent_id == control.id:
                report_integrity_issue(
                    "control_self_parent",
                    control_id=control.id,
                    framework_id=framework_id,
                )
                roots.append(control)
            elif parent_id not in by_id:
                report_integrity_issue(
                    "control_parent_missing",
                    control_id=control.id,
                    parent_id=parent_id,
                    framework_id=framework_id,
                )
                roots.append(control)
            elif by_id[parent_id].framework_id != control.framework_id:
                report_integrity_issue(
                    "control_parent_cross_framework",
                    control_id=control.id,
                    parent_id=parent_id,
                    framework_id=framework_id,
                )
                roots.append(control)
            else:
                children_by_parent[parent_id].append(control)

        visited: set[str] = set()
        forest = [self._emit(root, children_by_parent, visited) for root in roots]

        # Anything not reached from a root sits on a parent cycle
        for control in ordered:
            if control.id in visited:
                continue
            report_integrity_issue(
                "control_parent_cycle",
                control_id=control.id,
                parent_id=control.parent_id,
                framework_id=framework_id,
            )
            forest.append(self._emit(control, children_by_parent, visited))

        forest.sort(key=lambda node: _sort_key(node.control))

        self.logger.debug(
            "control_tree_built",
            framework_id=framework_id,
            control_count=len(controls),
            root_count=len(forest),
            depth=tree_depth(forest),
        )
        return forest

    def _emit(
        self,
        control: ControlRecord,
        children_by_parent: dict[str, list[ControlRecord]],
        visited: set[str],
    ) -> ControlNode:
        visited.add(control.id)
        node = ControlNode(control=control)
        for child in children_by_parent.get(control.id, []):
            if child.id in visited:
                # Cycle guard: cut here, the child is already placed
                continue
            node.children.append(self._emit(child, children_by_parent, visited))
        return node


def build_control_tree(
    controls: list[ControlRecord], framework_id: Optional[str] = None
) -> list[ControlNode]:
    """Convenience wrapper around :class:`ControlTreeBuilder`."""
    return ControlTreeBuilder().build(controls, framework_id)


def flatten_tree(roots: list[ControlNode]) -> Iterator[ControlNode]:
    """Yield every node depth-first, parents before children."""
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def tree_depth(roots: list[ControlNode]) -> int:
    """Depth of the deepest branch (a lone root has depth 1)."""
    depth = 0
    stack = [(node, 1) for node in roots]
    while stack:
        node, level = stack.pop()
        depth = max(depth, level)
        stack.extend((child, level + 1) for child in node.children)
    return depth
