"""Data models for network meta-analysis.

Edges are stored with ``treatment_a < treatment_b`` and carry the pooled
effect of ``treatment_a`` relative to ``treatment_b``.
"""

from dataclasses import dataclass
from typing import Any, Optional

from metasynth.models.analysis import ConfidenceInterval, PooledResult
from metasynth.models.study import EffectMeasure


@dataclass(frozen=True)
class NetworkEdge:
    """Direct head-to-head evidence between two treatments."""

    treatment_a: str
    treatment_b: str
    pooled: PooledResult
    study_ids: tuple[str, ...]
    participants: int = 0

    @property
    def edge_id(self) -> str:
        return f"{self.treatment_a}:{self.treatment_b}"

    @property
    def study_count(self) -> int:
        return len(self.study_ids)

    @property
    def estimate(self) -> float:
        return self.pooled.point_estimate

    @property
    def variance(self) -> float:
        return self.pooled.variance

    def effect_of(self, treatment: str, relative_to: str) -> float:
        """Directed effect of ``treatment`` versus ``relative_to``."""
        if (treatment, relative_to) == (self.treatment_a, self.treatment_b):
            return self.estimate
        if (treatment, relative_to) == (self.treatment_b, self.treatment_a):
            return -self.estimate
        raise KeyError(f"Edge {self.edge_id} does not join {treatment} and {relative_to}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "edge_id": self.edge_id,
            "treatment_a": self.treatment_a,
            "treatment_b": self.treatment_b,
            "study_count": self.study_count,
            "study_ids": list(self.study_ids),
            "participants": self.participants,
            "pooled": self.pooled.to_dict(),
        }


@dataclass(frozen=True)
class NetworkGraph:
    """Treatment-comparison graph: unique treatments and direct edges."""

    measure: EffectMeasure
    treatments: tuple[str, ...]
    edges: tuple[NetworkEdge, ...]

    def edge_between(self, first: str, second: str) -> Optional[NetworkEdge]:
        a, b = sorted((first, second))
        for edge in self.edges:
            if edge.treatment_a == a and edge.treatment_b == b:
                return edge
        return None

    def neighbors(self, treatment: str) -> tuple[str, ...]:
        found = set()
        for edge in self.edges:
            if edge.treatment_a == treatment:
                found.add(edge.treatment_b)
            elif edge.treatment_b == treatment:
                found.add(edge.treatment_a)
        return tuple(sorted(found))

    def components(self) -> tuple[tuple[str, ...], ...]:
        """Connected components via breadth-first traversal, each sorted."""
        adjacency = {t: set(self.neighbors(t)) for t in self.treatments}
        visited: set[str] = set()
        components = []
        for start in self.treatments:
            if start in visited:
                continue
            queue = [start]
            visited.add(start)
            member = []
            while queue:
                node = queue.pop(0)
                member.append(node)
                for neighbor in sorted(adjacency[node]):
                    if neighbor not in visited:
                        visited.add(neighbor)
                        queue.append(neighbor)
            components.append(tuple(sorted(member)))
        return tuple(components)

    @property
    def is_connected(self) -> bool:
        return len(self.components()) <= 1

    def triangles(self) -> tuple[tuple[str, str, str], ...]:
        """Every closed three-treatment loop, sorted lexicographically."""
        loops = []
        names = sorted(self.treatments)
        for i, a in enumerate(names):
            for j in range(i + 1, len(names)):
                b = names[j]
                if self.edge_between(a, b) is None:
                    continue
                for c in names[j + 1 :]:
                    if self.edge_between(b, c) and self.edge_between(a, c):
                        loops.append((a, b, c))
        return tuple(loops)

    def has_alternative_path(self, first: str, second: str) -> bool:
        """Whether the two treatments stay connected once their direct edge is removed."""
        a, b = sorted((first, second))
        queue = [a]
        visited = {a}
        while queue:
            node = queue.pop(0)
            for neighbor in self.neighbors(node):
                if {node, neighbor} == {a, b}:
                    continue
                if neighbor == b:
                    return True
                if neighbor not in visited:
                    visited.add(neighbor)
                    queue.append(neighbor)
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "measure": self.measure.value,
            "treatments": list(self.treatments),
            "edges": [edge.to_dict() for edge in self.edges],
        }


@dataclass(frozen=True)
class TreatmentNode:
    """Per-treatment geometry summary."""

    treatment: str
    study_count: int
    participants: int
    connected_to: tuple[str, ...]

    @property
    def degree(self) -> int:
        return len(self.connected_to)

    def to_dict(self) -> dict[str, Any]:
        return {
            "treatment": self.treatment,
            "study_count": self.study_count,
            "participants": self.participants,
            "degree": self.degree,
            "connected_to": list(self.connected_to),
        }


@dataclass(frozen=True)
class NetworkGeometry:
    """Shape of the evidence network."""

    node_count: int
    edge_count: int
    study_count: int
    two_arm_studies: int
    multi_arm_studies: int
    multi_arm_study_ids: tuple[str, ...]
    nodes: tuple[TreatmentNode, ...]
    is_connected: bool
    components: tuple[tuple[str, ...], ...]
    is_star_shaped: bool
    central_treatment: Optional[str]
    completeness: float  # Direct comparisons / possible pairs
    average_degree: float
    sparse_edges: tuple[str, ...]  # Edges informed by a single study
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "study_count": self.study_count,
            "two_arm_studies": self.two_arm_studies,
            "multi_arm_studies": self.multi_arm_studies,
            "multi_arm_study_ids": list(self.multi_arm_study_ids),
            "nodes": [node.to_dict() for node in self.nodes],
            "is_connected": self.is_connected,
            "components": [list(component) for component in self.components],
            "is_star_shaped": self.is_star_shaped,
            "central_treatment": self.central_treatment,
            "completeness": self.completeness,
            "average_degree": self.average_degree,
            "sparse_edges": list(self.sparse_edges),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class NetworkComparison:
    """Consistency-model estimate of ``treatment_a`` versus ``treatment_b``.

    ``evidence`` is "direct" (the edge is the only path), "mixed" (an edge
    plus at least one indirect path) or "indirect" (no head-to-head data).
    """

    treatment_a: str
    treatment_b: str
    estimate: float
    variance: float
    confidence_interval: ConfidenceInterval  # Reporting scale
    evidence: str
    component_index: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "treatment_a": self.treatment_a,
            "treatment_b": self.treatment_b,
            "estimate": self.estimate,
            "variance": self.variance,
            "confidence_interval": self.confidence_interval.to_dict(),
            "evidence": self.evidence,
            "component_index": self.component_index,
        }


@dataclass(frozen=True)
class ConsistencyResult:
    """Direct versus indirect evidence around one closed loop.

    ``edge_id`` names the direct comparison (first versus last treatment of
    ``loop``); the indirect estimate runs through the middle treatment.
    """

    edge_id: str
    loop: tuple[str, str, str]
    direct_estimate: float
    indirect_estimate: float
    inconsistency_factor: float
    standard_error: float
    z_value: float
    p_value: float
    is_inconsistent: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "edge_id": self.edge_id,
            "loop": list(self.loop),
            "direct_estimate": self.direct_estimate,
            "indirect_estimate": self.indirect_estimate,
            "inconsistency_factor": self.inconsistency_factor,
            "standard_error": self.standard_error,
            "z_value": self.z_value,
            "p_value": self.p_value,
            "is_inconsistent": self.is_inconsistent,
        }


@dataclass(frozen=True)
class GlobalInconsistency:
    """Sum of squared loop z-statistics tested against chi-square."""

    chi_square: float
    degrees_of_freedom: int
    p_value: float
    is_inconsistent: bool = False  # p < 0.05

    def to_dict(self) -> dict[str, Any]:
        return {
            "chi_square": self.chi_square,
            "degrees_of_freedom": self.degrees_of_freedom,
            "p_value": self.p_value,
            "is_inconsistent": self.is_inconsistent,
        }


@dataclass(frozen=True)
class RankingResult:
    """Ranking summary for one treatment.

    ``rank_distribution[r]`` is the probability of holding rank ``r + 1``
    (rank 1 = best after direction normalisation).
    """

    treatment_id: str
    sucra: float
    p_score: float
    rank_distribution: tuple[float, ...]
    mean_rank: float
    median_rank: int
    probability_best: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "treatment_id": self.treatment_id,
            "sucra": self.sucra,
            "p_score": self.p_score,
            "rank_distribution": list(self.rank_distribution),
            "mean_rank": self.mean_rank,
            "median_rank": self.median_rank,
            "probability_best": self.probability_best,
        }


@dataclass(frozen=True)
class TreatmentRanking:
    """Rankings for one connected component, best SUCRA first."""

    component_index: int
    treatments: tuple[str, ...]
    rankings: tuple[RankingResult, ...]
    higher_is_better: bool
    n_simulations: int
    random_seed: int
    sucra_tolerance: float
    deterministic: bool = False
    warnings: tuple[str, ...] = ()

    def for_treatment(self, treatment: str) -> RankingResult:
        for ranking in self.rankings:
            if ranking.treatment_id == treatment:
                return ranking
        raise KeyError(treatment)

    def to_dict(self) -> dict[str, Any]:
        return {
            "component_index": self.component_index,
            "treatments": list(self.treatments),
            "rankings": [ranking.to_dict() for ranking in self.rankings],
            "higher_is_better": self.higher_is_better,
            "n_simulations": self.n_simulations,
            "random_seed": self.random_seed,
            "sucra_tolerance": self.sucra_tolerance,
            "deterministic": self.deterministic,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class NetworkAnalysisResult:
    """Everything a network meta-analysis produces."""

    graph: NetworkGraph
    geometry: NetworkGeometry
    reference_treatments: tuple[str, ...]  # One per component
    comparisons: tuple[NetworkComparison, ...]
    consistency: tuple[ConsistencyResult, ...]
    global_inconsistency: Optional[GlobalInconsistency]
    rankings: tuple[TreatmentRanking, ...]
    warnings: tuple[str, ...] = ()

    def comparison(self, first: str, second: str) -> NetworkComparison:
        """Look up a comparison in either orientation (sign follows the request)."""
        for comp in self.comparisons:
            if (comp.treatment_a, comp.treatment_b) == (first, second):
                return comp
            if (comp.treatment_a, comp.treatment_b) == (second, first):
                return NetworkComparison(
                    treatment_a=first,
                    treatment_b=second,
                    estimate=-comp.estimate,
                    variance=comp.variance,
                    confidence_interval=_flip_interval(comp, self.graph.measure),
                    evidence=comp.evidence,
                    component_index=comp.component_index,
                )
        raise KeyError(f"No comparison between {first} and {second}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "graph": self.graph.to_dict(),
            "geometry": self.geometry.to_dict(),
            "reference_treatments": list(self.reference_treatments),
            "comparisons": [comp.to_dict() for comp in self.comparisons],
            "consistency": [loop.to_dict() for loop in self.consistency],
            "global_inconsistency": (
                self.global_inconsistency.to_dict() if self.global_inconsistency else None
            ),
            "rankings": [ranking.to_dict() for ranking in self.rankings],
            "warnings": list(self.warnings),
        }


def _flip_interval(comp: NetworkComparison, measure: EffectMeasure) -> ConfidenceInterval:
    ci = comp.confidence_interval
    if measure.log_scale:
        return ConfidenceInterval(1 / ci.upper, 1 / ci.lower, ci.level)
    return ConfidenceInterval(-ci.upper, -ci.lower, ci.level)
