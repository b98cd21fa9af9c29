from __future__ import annotations

import logging
from collections.abc import Mapping

import numpy as np
from numpy.typing import NDArray
from sklearn.metrics.pairwise import cosine_similarity

from feedlens.constants import DEFAULT_CLUSTER_COUNT, KMEANS_MAX_ITERATIONS
from feedlens.models import Cluster

logger = logging.getLogger(__name__)


def kmeans_clustering(
    embeddings: Mapping[str, NDArray[np.floating] | list[float]],
    k: int = DEFAULT_CLUSTER_COUNT,
    max_iterations: int = KMEANS_MAX_ITERATIONS,
    rng: np.random.Generator | None = None,
) -> list[Cluster]:
    """
    Partition embedded articles into at most k clusters by cosine k-means.

    Centroids start at k randomly sampled articles; each pass assigns every
    article to its most similar centroid and recomputes centroids as means.
    Empty clusters are dropped and the rest are sorted by size (largest
    first) with ids reassigned densely from 0, which is the order cluster
    labels are bound to.
    """
    article_ids = list(embeddings.keys())
    if not article_ids:
        return []

    vectors = np.vstack(
        [np.asarray(embeddings[aid], dtype=np.float64) for aid in article_ids]
    )
    n = len(article_ids)

    if n < k or k <= 1:
        return [
            Cluster(
                id=0,
                article_ids=article_ids,
                centroid=vectors.mean(axis=0).astype(np.float32)
                if k <= 1
                else vectors[0].astype(np.float32),
            )
        ]

    rng = rng if rng is not None else np.random.default_rng()
    centroids = vectors[rng.choice(n, size=k, replace=False)].copy()
    assignments = np.zeros(n, dtype=np.int64)

    for iteration in range(max_iterations):
        sims = cosine_similarity(vectors, centroids)
        # argmax keeps the first (lowest-index) centroid on ties
        new_assignments = np.argmax(sims, axis=1)

        changed = bool(np.any(new_assignments != assignments))
        assignments = new_assignments
        if not changed:
            logger.info("K-means converged after %d iterations", iteration + 1)
            break

        for c in range(k):
            mask = assignments == c
            if mask.any():
                centroids[c] = vectors[mask].mean(axis=0)

    clusters: list[Cluster] = []
    for c in range(k):
        members = [aid for aid, a in zip(article_ids, assignments) if a == c]
        if members:
            clusters.append(
                Cluster(
                    id=c,
                    article_ids=members,
                    centroid=centroids[c].astype(np.float32),
                )
            )

    clusters.sort(key=lambda cl: len(cl.article_ids), reverse=True)
    for index, cluster in enumerate(clusters):
        cluster.id = index

    logger.info(
        "Created %d clusters: %s articles each",
        len(clusters),
        ", ".join(str(len(c.article_ids)) for c in clusters),
    )
    return clusters
