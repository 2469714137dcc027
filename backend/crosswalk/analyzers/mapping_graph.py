"""Mapping graph resolver.

Indexes curated control-to-control mappings so the status calculator, the
matrix engine and the visualization projector can ask which controls a
control maps to (and from) without rescanning the edge list.
"""

from collections import defaultdict
from typing import Iterable, Optional, Union

import structlog

from crosswalk.core.exceptions import report_integrity_issue
from crosswalk.models.compliance import ConfidenceLevel
from crosswalk.schemas.records import MappingRecord

logger = structlog.get_logger()

CONFIDENCE_WEIGHTS = {
    ConfidenceLevel.HIGH: 3,
    ConfidenceLevel.MEDIUM: 2,
    ConfidenceLevel.LOW: 1,
}

# Unknown confidence values weigh as LOW rather than being dropped
DEFAULT_CONFIDENCE_WEIGHT = 1


def confidence_weight(level: Union[ConfidenceLevel, str, None]) -> int:
    """Numeric weight of a confidence level: HIGH=3, MEDIUM=2, LOW=1."""
    try:
        return CONFIDENCE_WEIGHTS[ConfidenceLevel(level)]
    except ValueError:
        return DEFAULT_CONFIDENCE_WEIGHT


def confidence_name(level: Union[ConfidenceLevel, str, None]) -> str:
    if isinstance(level, ConfidenceLevel):
        return level.value
    return str(level) if level is not None else ""


class MappingGraph:
    """Read-only directed graph of control mappings.

    Edges keep their input order in every lookup. Multiple edges between the
    same pair of controls are kept as distinct edges.
    """

    def __init__(
        self,
        mappings: Iterable[MappingRecord],
        known_control_ids: Optional[Iterable[str]] = None,
    ):
        self.logger = logger.bind(component="MappingGraph")
        known = set(known_control_ids) if known_control_ids is not None else None

        self._edges: list[MappingRecord] = []
        self._from: dict[str, list[MappingRecord]] = defaultdict(list)
        self._to: dict[str, list[MappingRecord]] = defaultdict(list)
        self._by_pair: dict[tuple[str, str], list[MappingRecord]] = defaultdict(list)
        skipped = 0

        for edge in mappings:
            if known is not None and (
                edge.source_control_id not in known
                or edge.target_control_id not in known
            ):
                report_integrity_issue(
                    "mapping_dangling_control",
                    mapping_id=edge.id,
                    source_control_id=edge.source_control_id,
                    target_control_id=edge.target_control_id,
                )
                skipped += 1
                continue
            if edge.source_framework_id == edge.target_framework_id:
                self.logger.debug(
                    "mapping_within_framework",
                    mapping_id=edge.id,
                    framework_id=edge.source_framework_id,
                )

            self._edges.append(edge)
            self._from[edge.source_control_id].append(edge)
            self._to[edge.target_control_id].append(edge)
            self._by_pair[(edge.source_framework_id, edge.target_framework_id)].append(
                edge
            )

        if skipped:
            self.logger.info(
                "mapping_graph_built",
                edge_count=len(self._edges),
                skipped_edges=skipped,
            )

    def __len__(self) -> int:
        return len(self._edges)

    @property
    def edges(self) -> list[MappingRecord]:
        return list(self._edges)

    def edges_from(self, control_id: str) -> list[MappingRecord]:
        """Edges whose source is ``control_id``."""
        return list(self._from.get(control_id, ()))

    def edges_to(self, control_id: str) -> list[MappingRecord]:
        """Edges whose target is ``control_id``."""
        return list(self._to.get(control_id, ()))

    def edges_between(self, framework_a: str, framework_b: str) -> list[MappingRecord]:
        """Edges between two frameworks, both directions merged."""
        forward = self._by_pair.get((framework_a, framework_b), [])
        if framework_a == framework_b:
            return list(forward)
        return list(forward) + list(self._by_pair.get((framework_b, framework_a), []))

    def neighbours(self, control_id: str) -> list[tuple[str, MappingRecord]]:
        """Controls linked to ``control_id`` in either direction.

        Returns (other_control_id, edge) pairs, outgoing edges first.
        """
        pairs = [(e.target_control_id, e) for e in self._from.get(control_id, ())]
        pairs.extend((e.source_control_id, e) for e in self._to.get(control_id, ()))
        return pairs

    def framework_ids(self) -> set[str]:
        """Every framework touched by at least one edge."""
        ids: set[str] = set()
        for source_fw, target_fw in self._by_pair:
            ids.add(source_fw)
            ids.add(target_fw)
        return ids

    def control_ids(self) -> set[str]:
        """Every control touched by at least one edge."""
        return set(self._from) | set(self._to)
