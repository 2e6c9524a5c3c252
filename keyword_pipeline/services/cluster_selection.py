"""Cluster-count selection by elbow + silhouette with content-strategy minimums."""

import logging
import math
import warnings
from dataclasses import dataclass, field

import numpy as np
from scipy import sparse
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning
from sklearn.metrics import pairwise_distances

from keyword_pipeline.schemas.pipeline import ClusteringConfig

logger = logging.getLogger(__name__)

SILHOUETTE_WEIGHT = 0.5
ELBOW_WEIGHT = 0.3
BALANCE_BONUS = 0.15
GRANULARITY_BONUS = 0.1
EARLY_STOP_SILHOUETTE = 0.1
BUSINESS_MINIMUM_MIN_SAMPLES = 500

FeatureInput = sparse.csr_matrix | np.ndarray


@dataclass
class KMeansFit:
    """Assignment vector, centroids and inertia of one k-means run."""

    labels: np.ndarray
    centroids: np.ndarray
    inertia: float

    @property
    def k(self) -> int:
        return int(self.centroids.shape[0])


@dataclass
class CandidateScore:
    """Evaluation of one candidate k."""

    k: int
    silhouette: float
    inertia: float
    elbow_score: float
    balance_bonus: float
    granularity_bonus: float

    @property
    def combined_score(self) -> float:
        return (
            self.silhouette * SILHOUETTE_WEIGHT
            + self.elbow_score * ELBOW_WEIGHT
            + self.balance_bonus
            + self.granularity_bonus
        )


@dataclass
class SelectionResult:
    """Chosen k with the evidence behind it."""

    k: int
    k_min: int
    k_max: int
    candidates: list[CandidateScore] = field(default_factory=list)
    business_minimum_applied: bool = False
    stopped_early: bool = False

    @property
    def best_candidate(self) -> CandidateScore | None:
        for candidate in self.candidates:
            if candidate.k == self.k:
                return candidate
        return None


def run_kmeans(
    matrix: FeatureInput,
    k: int,
    *,
    random_seed: int,
    n_init: int = 1,
    max_iterations: int = 100,
    tolerance: float = 1e-3,
) -> KMeansFit:
    """Run k-means with k-means++ initialization under a fixed seed."""
    model = KMeans(
        n_clusters=k,
        init="k-means++",
        n_init=n_init,
        max_iter=max_iterations,
        tol=tolerance,
        random_state=random_seed,
    )
    with warnings.catch_warnings():
        # Duplicate feature rows can leave fewer distinct clusters than k
        warnings.simplefilter("ignore", ConvergenceWarning)
        labels = model.fit_predict(matrix)
    return KMeansFit(
        labels=np.asarray(labels, dtype=np.int64),
        centroids=np.asarray(model.cluster_centers_, dtype=np.float64),
        inertia=float(model.inertia_),
    )


def silhouette_score(
    matrix: FeatureInput,
    labels: np.ndarray,
    *,
    sample_size: int = 2000,
    random_seed: int = 42,
) -> float:
    """Mean of (b - a) / max(a, b) over points.

    a is the mean distance to the other members of the point's own cluster
    (0 for singletons), b the smallest mean distance to any other non-empty
    cluster. Inputs above sample_size are evaluated on a seeded subsample.
    """
    labels = np.asarray(labels)
    n_samples = labels.shape[0]
    if n_samples < 2:
        return 0.0

    if n_samples > sample_size:
        rng = np.random.default_rng(random_seed)
        idx = np.sort(rng.choice(n_samples, size=sample_size, replace=False))
        matrix = matrix[idx]
        labels = labels[idx]

    cluster_ids, inverse, counts = np.unique(labels, return_inverse=True, return_counts=True)
    if len(cluster_ids) < 2:
        return 0.0

    distances = pairwise_distances(matrix, metric="euclidean")
    sums = np.zeros((distances.shape[0], len(cluster_ids)), dtype=np.float64)
    for column in range(len(cluster_ids)):
        sums[:, column] = distances[:, inverse == column].sum(axis=1)

    rows = np.arange(distances.shape[0])
    own_counts = counts[inverse]
    a = sums[rows, inverse] / np.maximum(own_counts - 1, 1)

    mean_other = sums / counts
    mean_other[rows, inverse] = np.inf
    b = mean_other.min(axis=1)

    denom = np.maximum(a, b)
    scores = np.divide(b - a, denom, out=np.zeros_like(a), where=denom > 0)
    return float(scores.mean())


class ClusterSelector:
    """Chooses k by jointly weighing silhouette and inertia decrease."""

    def __init__(self, config: ClusteringConfig | None = None) -> None:
        self.config = config or ClusteringConfig()

    @staticmethod
    def k_min(n_samples: int) -> int:
        return max(2, math.floor(math.sqrt(n_samples / 100)))

    @staticmethod
    def tiered_k_max(n_samples: int) -> int:
        """Upper bound on k, larger for larger inputs."""
        if n_samples > 2000:
            return min(150, n_samples // 20)
        if n_samples > 1000:
            return min(80, n_samples // 12)
        if n_samples > 100:
            return min(35, n_samples // 6)
        return min(15, n_samples // 3)

    @staticmethod
    def business_minimum(n_samples: int) -> int:
        """Minimum cluster count for content planning on larger inputs."""
        if n_samples > 2000:
            tier = 25
        elif n_samples > 1000:
            tier = 15
        else:
            tier = 8
        return max(n_samples // 100, tier)

    def select(self, matrix: FeatureInput) -> SelectionResult:
        n_samples = int(matrix.shape[0])
        k_min = self.k_min(n_samples)
        k_max = self.config.max_clusters or self.tiered_k_max(n_samples)
        max_possible = min(k_max, n_samples - 1)
        scan_limit = min(max_possible, self.config.max_evaluated_k)

        if n_samples < 2 or scan_limit < k_min:
            logger.info(
                "Too few keywords for k scan, using a single cluster",
                extra={"keyword_count": n_samples, "k_min": k_min, "k_max": max_possible},
            )
            return SelectionResult(k=1, k_min=k_min, k_max=max_possible)

        candidates: list[CandidateScore] = []
        stopped_early = False
        prev_inertia: float | None = None
        for k in range(k_min, scan_limit + 1):
            fit = run_kmeans(
                matrix,
                k,
                random_seed=self.config.random_seed,
                n_init=1,
                max_iterations=self.config.max_iterations,
                tolerance=self.config.tolerance,
            )
            silhouette = silhouette_score(
                matrix,
                fit.labels,
                sample_size=self.config.silhouette_sample_size,
                random_seed=self.config.random_seed,
            )
            if prev_inertia is None or prev_inertia <= 0:
                elbow = 0.0
            else:
                elbow = (prev_inertia - fit.inertia) / prev_inertia
            prev_inertia = fit.inertia

            candidates.append(
                CandidateScore(
                    k=k,
                    silhouette=silhouette,
                    inertia=fit.inertia,
                    elbow_score=elbow,
                    balance_bonus=BALANCE_BONUS if k > n_samples / 150 else 0.0,
                    granularity_bonus=GRANULARITY_BONUS if k > n_samples / 100 else 0.0,
                )
            )

            if (
                k > k_min + 5
                and silhouette < EARLY_STOP_SILHOUETTE
                and k > n_samples / 150
            ):
                stopped_early = True
                break

        # max() keeps the first (smallest) k on ties
        best = max(candidates, key=lambda c: c.combined_score)
        best_k = best.k
        business_minimum_applied = False

        minimum = self.business_minimum(n_samples)
        if n_samples > BUSINESS_MINIMUM_MIN_SAMPLES and best_k < minimum:
            best_k = min(minimum, max_possible)
            business_minimum_applied = best_k != best.k

        logger.info(
            "Cluster count selected",
            extra={
                "keyword_count": n_samples,
                "k": best_k,
                "k_min": k_min,
                "k_max": max_possible,
                "candidates_evaluated": len(candidates),
                "best_silhouette": round(best.silhouette, 4),
                "business_minimum_applied": business_minimum_applied,
                "stopped_early": stopped_early,
            },
        )
        return SelectionResult(
            k=best_k,
            k_min=k_min,
            k_max=max_possible,
            candidates=candidates,
            business_minimum_applied=business_minimum_applied,
            stopped_early=stopped_early,
        )
