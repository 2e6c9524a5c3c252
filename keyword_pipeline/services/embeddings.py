"""TF-IDF semantic embeddings and engineered features for clustering.

Each keyword becomes one row of a sparse feature matrix:

    [5 engineered scalars x (1 - semantic_weight)] + [unit TF-IDF vector x semantic_weight]

The engineered block is split 0.4/0.3/0.1/0.1/0.1 across normalized search
volume, normalized competition, normalized word count, a question-intent
flag and a commercial-intent flag.
"""

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from functools import lru_cache

import numpy as np
from nltk.stem import PorterStemmer
from scipy import sparse
from sklearn.preprocessing import normalize

from keyword_pipeline.schemas.pipeline import EmbeddingConfig
from keyword_pipeline.services.types import KeywordRecord

logger = logging.getLogger(__name__)

STOPWORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should",
    }
)

QUESTION_PATTERN = re.compile(
    r"\b(what|how|why|when|where|who|which|can|should|will|is|are|does|do)\b"
)
COMMERCIAL_PATTERN = re.compile(
    r"\b(buy|purchase|price|cost|deal|sale|discount|cheap|best|top|review)\b"
)

ENGINEERED_FEATURE_WEIGHTS = (0.4, 0.3, 0.1, 0.1, 0.1)
ENGINEERED_FEATURE_NAMES = (
    "search_volume",
    "competition",
    "word_count",
    "question_intent",
    "commercial_intent",
)

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")
_stemmer = PorterStemmer()


@lru_cache(maxsize=50_000)
def _stem(token: str) -> str:
    return _stemmer.stem(token)


class KeywordTokenizer:
    """Word tokenizer with optional stopword filtering and Porter stemming."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()

    @staticmethod
    def raw_tokens(text: str) -> list[str]:
        return _TOKEN_PATTERN.findall(text.lower())

    def tokenize(self, text: str) -> list[str]:
        tokens = self.raw_tokens(text)
        if self.config.use_stopword_filtering:
            tokens = [
                t for t in tokens
                if t not in STOPWORDS and len(t) >= self.config.min_token_length
            ]
        if self.config.use_stemming:
            tokens = [_stem(t) for t in tokens]
        return tokens


@dataclass
class SemanticEmbeddings:
    """Unit-normalized TF-IDF rows and the vocabulary in column order."""

    matrix: sparse.csr_matrix
    vocabulary: list[str] = field(default_factory=list)
    documents: list[list[str]] = field(default_factory=list)


@dataclass
class FeatureMatrix:
    """Weighted feature rows ready for k-means."""

    matrix: sparse.csr_matrix
    embeddings: SemanticEmbeddings
    engineered: np.ndarray

    @property
    def n_samples(self) -> int:
        return int(self.matrix.shape[0])


class EmbeddingBuilder:
    """Builds TF-IDF embeddings and the combined feature matrix."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self.tokenizer = KeywordTokenizer(self.config)

    def build_semantic_embeddings(self, keywords: list[KeywordRecord]) -> SemanticEmbeddings:
        """TF-IDF with tf = count / doc_length and idf = ln(N / doc_freq), L2-normalized."""
        vocab: dict[str, int] = {}
        documents: list[list[str]] = []
        for kw in keywords:
            tokens = self.tokenizer.tokenize(kw.cleaned_phrase)
            for token in tokens:
                if token not in vocab:
                    vocab[token] = len(vocab)
            documents.append(tokens)

        n_docs = len(documents)
        doc_freq: Counter[str] = Counter()
        for tokens in documents:
            doc_freq.update(set(tokens))

        rows: list[int] = []
        cols: list[int] = []
        data: list[float] = []
        for row, tokens in enumerate(documents):
            if not tokens:
                continue
            for token, count in Counter(tokens).items():
                tf = count / len(tokens)
                idf = math.log(n_docs / doc_freq[token])
                if idf == 0.0:
                    continue
                rows.append(row)
                cols.append(vocab[token])
                data.append(tf * idf)

        matrix = sparse.csr_matrix(
            (data, (rows, cols)),
            shape=(n_docs, len(vocab)),
            dtype=np.float64,
        )
        if n_docs and len(vocab):
            matrix = normalize(matrix, norm="l2", axis=1, copy=False)

        return SemanticEmbeddings(
            matrix=matrix.tocsr(),
            vocabulary=list(vocab),
            documents=documents,
        )

    def build_engineered_features(self, keywords: list[KeywordRecord]) -> np.ndarray:
        """Five unweighted scalars per keyword, each in [0, 1]."""
        features = np.zeros((len(keywords), len(ENGINEERED_FEATURE_WEIGHTS)), dtype=np.float64)
        if not keywords:
            return features

        max_volume = max(kw.search_volume or 0 for kw in keywords)
        max_competition = max(kw.competition or 0.0 for kw in keywords)

        for i, kw in enumerate(keywords):
            phrase = kw.cleaned_phrase
            features[i, 0] = (kw.search_volume or 0) / max_volume if max_volume > 0 else 0.0
            features[i, 1] = (kw.competition or 0.0) / max_competition if max_competition > 0 else 0.0
            features[i, 2] = min(len(phrase.split()) / 5, 1.0)
            features[i, 3] = 1.0 if QUESTION_PATTERN.search(phrase) else 0.0
            features[i, 4] = 1.0 if COMMERCIAL_PATTERN.search(phrase) else 0.0
        return features

    def build_feature_matrix(self, keywords: list[KeywordRecord]) -> FeatureMatrix:
        """Concatenate weighted engineered scalars with the weighted semantic embedding."""
        embeddings = self.build_semantic_embeddings(keywords)
        engineered = self.build_engineered_features(keywords)

        weight = self.config.semantic_weight
        scalar_weights = np.asarray(ENGINEERED_FEATURE_WEIGHTS) * (1.0 - weight)
        weighted_scalars = sparse.csr_matrix(engineered * scalar_weights)
        if embeddings.matrix.shape[1]:
            matrix = sparse.hstack(
                [weighted_scalars, embeddings.matrix * weight],
                format="csr",
            )
        else:
            matrix = weighted_scalars

        logger.info(
            "Feature matrix built",
            extra={
                "keyword_count": len(keywords),
                "vocabulary_size": len(embeddings.vocabulary),
                "semantic_weight": weight,
            },
        )
        return FeatureMatrix(
            matrix=matrix,
            embeddings=embeddings,
            engineered=engineered,
        )
