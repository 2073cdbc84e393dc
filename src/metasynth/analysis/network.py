"""Network meta-analysis.

Builds the treatment-comparison graph from multi-arm studies, describes
its geometry, checks direct/indirect consistency around closed loops, fits
a consistency model per connected component and ranks the treatments.

Multi-arm studies contribute one contrast per pair of arms; contrasts from
the same study are treated as independent.

References:
    - Bucher HC, et al. J Clin Epidemiol 1997;50:683-691 (indirect comparison)
    - Salanti G, et al. PLoS One 2008;3:e3654 (network geometry)
    - Rücker G. Res Synth Methods 2012;3:312-324 (graph-theoretical NMA)
"""

import math
import warnings as py_warnings
from itertools import combinations
from typing import Iterable, Optional, Sequence

import numpy as np
from scipy import stats

from metasynth.analysis.effect_size import EffectSizeCalculator
from metasynth.analysis.pooling import PoolingEngine
from metasynth.analysis.ranking import TreatmentRanker
from metasynth.config import DEFAULT_CONFIG, AnalysisConfig
from metasynth.exceptions import (
    DisconnectedNetworkWarning,
    InsufficientDataError,
    InvalidInputError,
)
from metasynth.models.analysis import ConfidenceInterval, EffectEstimate, PoolingModel
from metasynth.models.network import (
    ConsistencyResult,
    GlobalInconsistency,
    NetworkAnalysisResult,
    NetworkComparison,
    NetworkEdge,
    NetworkGeometry,
    NetworkGraph,
    TreatmentNode,
)
from metasynth.models.study import EffectMeasure, StudyRecord

# Loop inconsistency flagged below this p-value
LOOP_INCONSISTENCY_THRESHOLD = 0.10
GLOBAL_INCONSISTENCY_THRESHOLD = 0.05


class NetworkMetaAnalysisEngine:
    """Network meta-analysis over labelled multi-arm studies."""

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or DEFAULT_CONFIG
        self.calculator = EffectSizeCalculator(self.config)
        self.pooling = PoolingEngine(self.config)
        self.ranker = TreatmentRanker(self.config)

    def analyze(
        self,
        studies: Sequence[StudyRecord],
        measure: EffectMeasure | str,
        model: PoolingModel | str = PoolingModel.RANDOM,
        reference: Optional[str] = None,
    ) -> NetworkAnalysisResult:
        """Run the full network analysis.

        A disconnected network is not an error: every component is fitted
        and ranked on its own, and a :class:`DisconnectedNetworkWarning` is
        issued and recorded in the result.

        Args:
            studies: Studies whose arms carry treatment labels
            measure: Effect measure for every pairwise contrast
            model: Pooling model for each direct comparison
            reference: Preferred reference treatment (used in its component)
        """
        studies = list(studies)
        graph = self.build_graph(studies, measure, model)
        geometry = self.geometry(graph, studies)
        loops = self.consistency(graph)
        global_test = self.global_inconsistency(loops)

        warnings = list(geometry.warnings)
        if not geometry.is_connected:
            message = (
                f"Network has {len(geometry.components)} disconnected components; "
                "treatments are compared and ranked within each component only"
            )
            py_warnings.warn(message, DisconnectedNetworkWarning, stacklevel=2)
            warnings.append(message)
        if not loops:
            warnings.append("No closed loops: consistency cannot be assessed")

        references = []
        comparisons: list[NetworkComparison] = []
        rankings = []
        for index, component in enumerate(graph.components()):
            if len(component) < 2:
                continue
            ref = reference if reference in component else component[0]
            references.append(ref)
            order, effects, covariance = self.fit_component(graph, component, ref)
            comparisons.extend(self._comparisons(graph, order, effects, covariance, index))
            rankings.append(self.ranker.rank(order, effects, covariance, component_index=index))

        return NetworkAnalysisResult(
            graph=graph,
            geometry=geometry,
            reference_treatments=tuple(references),
            comparisons=tuple(comparisons),
            consistency=tuple(loops),
            global_inconsistency=global_test,
            rankings=tuple(rankings),
            warnings=tuple(warnings),
        )

    # === Graph ===

    def build_graph(
        self,
        studies: Sequence[StudyRecord],
        measure: EffectMeasure | str,
        model: PoolingModel | str = PoolingModel.RANDOM,
    ) -> NetworkGraph:
        """Pool every pair of directly compared treatments into an edge.

        Raises:
            InvalidInputError: Unlabelled arms or a treatment repeated within a study
            InsufficientDataError: No studies, or fewer than two treatments
        """
        measure = EffectMeasure.parse(measure)
        studies = list(studies)
        if not studies:
            raise InsufficientDataError("Network meta-analysis", 1, 0)

        contrasts: dict[tuple[str, str], list[EffectEstimate]] = {}
        participants: dict[tuple[str, str], int] = {}
        treatments: set[str] = set()
        for study in studies:
            labels = _validate_network_study(study)
            treatments.update(labels)
            arms = dict(zip(labels, study.arms))
            for first, second in combinations(sorted(labels), 2):
                estimate = self.calculator.calculate_arms(
                    study.study_id, arms[first], arms[second], measure
                )
                contrasts.setdefault((first, second), []).append(estimate)
                participants[(first, second)] = (
                    participants.get((first, second), 0)
                    + arms[first].sample_size
                    + arms[second].sample_size
                )

        if len(treatments) < 2:
            raise InsufficientDataError(
                "Network meta-analysis", 2, len(treatments), unit="treatments"
            )

        edges = tuple(
            NetworkEdge(
                treatment_a=a,
                treatment_b=b,
                pooled=self.pooling.pool(estimates, model),
                study_ids=tuple(e.study_id for e in estimates),
                participants=participants[(a, b)],
            )
            for (a, b), estimates in sorted(contrasts.items())
        )
        return NetworkGraph(measure=measure, treatments=tuple(sorted(treatments)), edges=edges)

    # === Geometry ===

    def geometry(self, graph: NetworkGraph, studies: Iterable[StudyRecord]) -> NetworkGeometry:
        """Describe the shape of the evidence network."""
        studies = list(studies)
        study_counts = {t: 0 for t in graph.treatments}
        participants = {t: 0 for t in graph.treatments}
        for study in studies:
            for arm in study.arms:
                if arm.treatment in study_counts:
                    study_counts[arm.treatment] += 1
                    participants[arm.treatment] += arm.sample_size

        nodes = tuple(
            TreatmentNode(
                treatment=t,
                study_count=study_counts[t],
                participants=participants[t],
                connected_to=graph.neighbors(t),
            )
            for t in graph.treatments
        )
        n = len(graph.treatments)
        components = graph.components()
        multi_arm = tuple(s.study_id for s in studies if s.is_multi_arm)
        star, center = _star_shape(nodes)
        possible = n * (n - 1) / 2
        sparse = tuple(edge.edge_id for edge in graph.edges if edge.study_count < 2)

        warnings = []
        if len(components) > 1:
            warnings.append(
                "Network is disconnected - cannot perform network meta-analysis on all treatments"
            )
        if sparse:
            warnings.append("Some comparisons have only one study - results may be unreliable")
        if star:
            warnings.append("Network is star-shaped - high risk of inconsistency")
        isolated = [node.treatment for node in nodes if node.degree == 1]
        if isolated and n > 2:
            warnings.append(f"{len(isolated)} treatment(s) have only one connection")
        if multi_arm:
            warnings.append(
                f"{len(multi_arm)} multi-arm stud{'y' if len(multi_arm) == 1 else 'ies'}: "
                "contrasts treated as independent"
            )
        if n == 2:
            warnings.append(
                "Only 2 treatments - standard pairwise meta-analysis is more appropriate"
            )

        return NetworkGeometry(
            node_count=n,
            edge_count=len(graph.edges),
            study_count=len(studies),
            two_arm_studies=len(studies) - len(multi_arm),
            multi_arm_studies=len(multi_arm),
            multi_arm_study_ids=multi_arm,
            nodes=nodes,
            is_connected=len(components) <= 1,
            components=components,
            is_star_shaped=star,
            central_treatment=center,
            completeness=len(graph.edges) / possible if possible else 0.0,
            average_degree=2 * len(graph.edges) / n if n else 0.0,
            sparse_edges=sparse,
            warnings=tuple(warnings),
        )

    # === Consistency ===

    def consistency(self, graph: NetworkGraph) -> list[ConsistencyResult]:
        """Compare direct and indirect evidence in every triangle.

        For the loop (a, b, c) the direct estimate is edge a-c and the
        indirect estimate is (a vs b) + (b vs c). Overlapping loops are each
        evaluated on their own.
        """
        results = []
        for a, b, c in graph.triangles():
            ab = graph.edge_between(a, b)
            bc = graph.edge_between(b, c)
            ac = graph.edge_between(a, c)
            direct = ac.effect_of(a, c)
            indirect = ab.effect_of(a, b) + bc.effect_of(b, c)

            # IF = direct - indirect, Var(IF) = Var_ab + Var_bc + Var_ac
            factor = direct - indirect
            se = math.sqrt(ab.variance + bc.variance + ac.variance)
            z = factor / se
            p_value = float(2 * stats.norm.sf(abs(z)))
            results.append(
                ConsistencyResult(
                    edge_id=ac.edge_id,
                    loop=(a, b, c),
                    direct_estimate=direct,
                    indirect_estimate=indirect,
                    inconsistency_factor=factor,
                    standard_error=se,
                    z_value=z,
                    p_value=p_value,
                    is_inconsistent=p_value < LOOP_INCONSISTENCY_THRESHOLD,
                )
            )
        return results

    def global_inconsistency(
        self, loops: Sequence[ConsistencyResult]
    ) -> Optional[GlobalInconsistency]:
        """χ² = Σz² over loops with df = number of loops (None without loops)."""
        if not loops:
            return None
        chi_square = float(sum(loop.z_value**2 for loop in loops))
        df = len(loops)
        p_value = float(stats.chi2.sf(chi_square, df))
        return GlobalInconsistency(
            chi_square=chi_square,
            degrees_of_freedom=df,
            p_value=p_value,
            is_inconsistent=p_value < GLOBAL_INCONSISTENCY_THRESHOLD,
        )

    # === Consistency model ===

    def fit_component(
        self, graph: NetworkGraph, component: Sequence[str], reference: str
    ) -> tuple[list[str], np.ndarray, np.ndarray]:
        """Weighted least squares fit of the edges inside one component.

        Each edge a-b contributes y = d_a - d_b with weight 1/Var. Basic
        parameters d_t are effects versus ``reference`` (d_reference = 0):

            θ = (XᵀWX)⁻¹ XᵀWy,  Cov(θ) = (XᵀWX)⁻¹

        Returns:
            (treatments with the reference first, effects, covariance); the
            reference has effect 0 and a zero covariance row
        """
        order = [reference] + [t for t in component if t != reference]
        index = {t: i for i, t in enumerate(order)}
        members = set(component)
        edges = [e for e in graph.edges if e.treatment_a in members]

        k = len(order)
        x = np.zeros((len(edges), k - 1))
        y = np.zeros(len(edges))
        w = np.zeros(len(edges))
        for row, edge in enumerate(edges):
            if edge.treatment_a != reference:
                x[row, index[edge.treatment_a] - 1] = 1.0
            if edge.treatment_b != reference:
                x[row, index[edge.treatment_b] - 1] = -1.0
            y[row] = edge.estimate
            w[row] = 1 / edge.variance

        information = x.T @ (w[:, None] * x)
        basic_cov = np.linalg.inv(information)
        basic = basic_cov @ (x.T @ (w * y))

        effects = np.concatenate([[0.0], basic])
        covariance = np.zeros((k, k))
        covariance[1:, 1:] = (basic_cov + basic_cov.T) / 2
        return order, effects, covariance

    def _comparisons(
        self,
        graph: NetworkGraph,
        order: list[str],
        effects: np.ndarray,
        covariance: np.ndarray,
        component_index: int,
    ) -> list[NetworkComparison]:
        z_crit = float(stats.norm.ppf(1 - self.config.alpha / 2))
        index = {t: i for i, t in enumerate(order)}
        comparisons = []
        for a, b in combinations(sorted(order), 2):
            i, j = index[a], index[b]
            estimate = float(effects[i] - effects[j])
            variance = float(covariance[i, i] + covariance[j, j] - 2 * covariance[i, j])
            half_width = z_crit * math.sqrt(max(variance, 0.0))
            ci = ConfidenceInterval(
                estimate - half_width, estimate + half_width, self.config.confidence_level
            )
            if graph.edge_between(a, b) is None:
                evidence = "indirect"
            elif graph.has_alternative_path(a, b):
                evidence = "mixed"
            else:
                evidence = "direct"
            comparisons.append(
                NetworkComparison(
                    treatment_a=a,
                    treatment_b=b,
                    estimate=estimate,
                    variance=variance,
                    confidence_interval=ci.exponentiated() if graph.measure.log_scale else ci,
                    evidence=evidence,
                    component_index=component_index,
                )
            )
        return comparisons


def _validate_network_study(study: StudyRecord) -> list[str]:
    if len(study.arms) < 2:
        raise InvalidInputError(
            "network studies need at least two arms", study_id=study.study_id, field="arms"
        )
    labels = [arm.treatment for arm in study.arms]
    if any(not label for label in labels):
        raise InvalidInputError(
            "every arm needs a treatment label", study_id=study.study_id, field="treatment"
        )
    if len(set(labels)) != len(labels):
        raise InvalidInputError(
            "a treatment appears in more than one arm", study_id=study.study_id, field="treatment"
        )
    return labels


def _star_shape(nodes: Sequence[TreatmentNode]) -> tuple[bool, Optional[str]]:
    """One hub linked to every other treatment, all others linked only to the hub."""
    if len(nodes) < 3:
        return False, None
    hub = max(nodes, key=lambda node: (node.degree, node.treatment))
    if hub.degree != len(nodes) - 1:
        return False, None
    for node in nodes:
        if node is not hub and node.connected_to != (hub.treatment,):
            return False, None
    return True, hub.treatment
