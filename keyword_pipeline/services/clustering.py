"""K-means topic clustering over keyword feature vectors."""

import logging
from collections import Counter
from dataclasses import dataclass, field

import numpy as np
from rapidfuzz import process
from rapidfuzz.distance import JaroWinkler

from keyword_pipeline.core.exceptions import ClusteringError
from keyword_pipeline.schemas.pipeline import ClusteringConfig
from keyword_pipeline.services.cluster_selection import (
    ClusterSelector,
    KMeansFit,
    SelectionResult,
    run_kmeans,
    silhouette_score,
)
from keyword_pipeline.services.embeddings import EmbeddingBuilder, FeatureMatrix, KeywordTokenizer
from keyword_pipeline.services.types import Cluster, KeywordRecord

logger = logging.getLogger(__name__)

CLUSTER_NAME_TERMS = 3


@dataclass
class ClusteringResult:
    """Clusters of one run plus how k was chosen."""

    clusters: list[Cluster] = field(default_factory=list)
    k: int = 0
    silhouette: float = 0.0
    selection: SelectionResult | None = None

    @property
    def member_count(self) -> int:
        return sum(cluster.size for cluster in self.clusters)


class ClusteringEngine:
    """Partitions keywords into named topic clusters.

    Every input keyword ends up in exactly one cluster, and cluster_id and
    cluster_name are written back onto the records.
    """

    def __init__(self, config: ClusteringConfig | None = None) -> None:
        self.config = config or ClusteringConfig()
        self.embedding_builder = EmbeddingBuilder(self.config.embedding)
        self.selector = ClusterSelector(self.config)

    @property
    def tokenizer(self) -> KeywordTokenizer:
        return self.embedding_builder.tokenizer

    def cluster_keywords(
        self,
        keywords: list[KeywordRecord],
        cluster_count: int | None = None,
    ) -> ClusteringResult:
        """Cluster keywords, selecting k unless one is forced.

        Args:
            keywords: Unique cleaned keyword records.
            cluster_count: Forced k; falls back to the configured cluster_count,
                then to automatic selection. Clamped to [1, len(keywords)].

        Returns:
            ClusteringResult with non-empty clusters numbered from 0.
        """
        n_samples = len(keywords)
        if n_samples == 0:
            return ClusteringResult()

        features = self.embedding_builder.build_feature_matrix(keywords)

        if n_samples == 1:
            keyword = keywords[0]
            cluster = Cluster(
                id=0,
                name=keyword.cleaned_phrase or keyword.phrase,
                member_keywords=[keyword],
                centroid=self._row_mean(features, [0]),
                silhouette=1.0,
                coherence=1.0,
            )
            return self._finish([cluster], k=1, silhouette=1.0, selection=None)

        requested = cluster_count if cluster_count is not None else self.config.cluster_count
        selection: SelectionResult | None = None
        if requested is not None:
            k = min(max(int(requested), 1), n_samples)
        else:
            selection = self.selector.select(features.matrix)
            k = selection.k

        if k == 1:
            phrases = [kw.cleaned_phrase for kw in keywords]
            cluster = Cluster(
                id=0,
                name=self.generate_cluster_name(phrases),
                member_keywords=list(keywords),
                centroid=self._row_mean(features, list(range(n_samples))),
                silhouette=1.0,
                coherence=self.calculate_coherence(phrases),
            )
            return self._finish([cluster], k=1, silhouette=1.0, selection=selection)

        fit = run_kmeans(
            features.matrix,
            k,
            random_seed=self.config.random_seed,
            n_init=self.config.n_init,
            max_iterations=self.config.max_iterations,
            tolerance=self.config.tolerance,
        )
        if fit.labels.shape[0] != n_samples:
            raise ClusteringError(
                "Assignment count does not match keyword count",
                {"assignments": int(fit.labels.shape[0]), "keywords": n_samples},
            )

        silhouette = silhouette_score(
            features.matrix,
            fit.labels,
            sample_size=self.config.silhouette_sample_size,
            random_seed=self.config.random_seed,
        )
        clusters = self.build_clusters(keywords, fit, silhouette)
        return self._finish(clusters, k=k, silhouette=silhouette, selection=selection)

    def build_clusters(
        self,
        keywords: list[KeywordRecord],
        fit: KMeansFit,
        silhouette: float,
    ) -> list[Cluster]:
        """Group records by label; empty clusters are dropped and ids renumbered."""
        members_by_label: dict[int, list[int]] = {}
        for index, label in enumerate(fit.labels.tolist()):
            members_by_label.setdefault(label, []).append(index)

        clusters: list[Cluster] = []
        for label in sorted(members_by_label):
            indices = members_by_label[label]
            members = [keywords[i] for i in indices]
            phrases = [kw.cleaned_phrase for kw in members]
            clusters.append(
                Cluster(
                    id=len(clusters),
                    name=self.generate_cluster_name(phrases),
                    member_keywords=members,
                    centroid=fit.centroids[label].tolist(),
                    # Corpus-level value shared by every cluster of the run
                    silhouette=silhouette,
                    coherence=self.calculate_coherence(phrases),
                )
            )
        return clusters

    def generate_cluster_name(self, phrases: list[str]) -> str:
        """Top terms by frequency; ties keep first-seen order."""
        counts: Counter[str] = Counter()
        for phrase in phrases:
            counts.update(self.tokenizer.tokenize(phrase))
        if not counts:
            for phrase in phrases:
                counts.update(KeywordTokenizer.raw_tokens(phrase))
        if not counts:
            return phrases[0] if phrases else ""
        return " ".join(token for token, _ in counts.most_common(CLUSTER_NAME_TERMS))

    @staticmethod
    def calculate_coherence(phrases: list[str]) -> float:
        """Mean pairwise Jaro-Winkler similarity of member phrases (0 for singletons)."""
        if len(phrases) < 2:
            return 0.0
        scores = process.cdist(
            phrases,
            phrases,
            scorer=JaroWinkler.normalized_similarity,
            dtype=np.float64,
        )
        upper = np.triu_indices(len(phrases), k=1)
        return float(np.clip(scores[upper].mean(), 0.0, 1.0))

    @staticmethod
    def assign_clusters(clusters: list[Cluster]) -> None:
        """Write cluster id and name back onto member records."""
        for cluster in clusters:
            for kw in cluster.member_keywords:
                kw.cluster_id = cluster.id
                kw.cluster_name = cluster.name

    @staticmethod
    def _row_mean(features: FeatureMatrix, indices: list[int]) -> list[float]:
        rows = features.matrix[indices]
        return np.asarray(rows.mean(axis=0)).ravel().tolist()

    def _finish(
        self,
        clusters: list[Cluster],
        *,
        k: int,
        silhouette: float,
        selection: SelectionResult | None,
    ) -> ClusteringResult:
        self.assign_clusters(clusters)
        result = ClusteringResult(
            clusters=clusters,
            k=k,
            silhouette=silhouette,
            selection=selection,
        )
        logger.info(
            "Clustering complete",
            extra={
                "keyword_count": result.member_count,
                "k": k,
                "cluster_count": len(clusters),
                "silhouette": round(silhouette, 4),
            },
        )
        return result
