"""Clustering module -- semantic clustering, the clustering state machine and personas."""

from keyword_mapping.modules.clustering.clusterer import (
    MIN_CLUSTERING_KEYWORDS,
    SemanticClusterer,
    build_clusters_with_volume,
    validate_clusters,
)
from keyword_mapping.modules.clustering.orchestrator import ClusteringOrchestrator
from keyword_mapping.modules.clustering.persona import PersonaBook, PersonaGenerator

__all__ = [
    "MIN_CLUSTERING_KEYWORDS",
    "SemanticClusterer",
    "build_clusters_with_volume",
    "validate_clusters",
    "ClusteringOrchestrator",
    "PersonaBook",
    "PersonaGenerator",
]
