"""Semantic clustering, retrieval and knowledge-coverage tracking for chunk catalogs."""

from .clustering.engine import ClusteringEngine
from .clustering.postprocess import ClusterPostProcessor
from .config import ClusteringOptions, load_config
from .models import Chunk, ChunkMetadata, Cluster, ClusteringResult, KnowledgeState, ProgressEvent, RetrievalHit
from .query.retriever import ClusterRetriever
from .storage.tiered import TieredPersistenceStore
from .tracking.autosave import AutoSaver
from .tracking.progress import KnowledgeCatalog, KnowledgeProgressTracker

__version__ = "0.1.0"

__all__ = [
    "AutoSaver",
    "Chunk",
    "ChunkMetadata",
    "Cluster",
    "ClusterPostProcessor",
    "ClusterRetriever",
    "ClusteringEngine",
    "ClusteringOptions",
    "ClusteringResult",
    "KnowledgeCatalog",
    "KnowledgeProgressTracker",
    "KnowledgeState",
    "ProgressEvent",
    "RetrievalHit",
    "TieredPersistenceStore",
    "load_config",
]
