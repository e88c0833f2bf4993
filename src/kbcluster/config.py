"""Configuration management for kbcluster."""

import copy
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CONFIG = {
    "home": "~/.kbcluster",
    "embedding_model": "all-MiniLM-L6-v2",
    "clustering": {
        "similarity_threshold": 0.92,
        "min_cluster_size": 2,
        "max_cluster_size": 50,
        "algorithm": "hierarchical",
        "linkage_type": "average",
        "dbscan_epsilon": None,
        "dbscan_min_points": 2,
        "max_clusters": 100,
    },
    "retrieval": {"top_k": 3},
    "storage": {
        "tiers": ["files", "chromadb", "memory"],
        "state_path": None,
        "backup_path": None,
        "chroma_path": None,
        "collection": "knowledge_state",
    },
    "tracking": {"autosave_interval": 30.0, "backup_retention": 7, "minimum_totals": {}},
}

ALGORITHMS = ("hierarchical", "dbscan")
LINKAGES = ("single", "complete", "average")

# camelCase names accepted for the clustering section
_OPTION_ALIASES = {
    "similarityThreshold": "similarity_threshold",
    "minClusterSize": "min_cluster_size",
    "maxClusterSize": "max_cluster_size",
    "linkageType": "linkage_type",
    "dbscanEpsilon": "dbscan_epsilon",
    "dbscanMinPoints": "dbscan_min_points",
    "maxClusters": "max_clusters",
}


@dataclass(frozen=True)
class ClusteringOptions:
    """Validated clustering parameters.

    Construction fails fast with ``ValueError`` on inconsistent values; a bad
    configuration is a caller bug, not something to recover from at runtime.
    """
    similarity_threshold: float = 0.92
    min_cluster_size: int = 2
    max_cluster_size: int = 50
    algorithm: str = "hierarchical"
    linkage_type: str = "average"
    dbscan_epsilon: float | None = None
    dbscan_min_points: int = 2
    max_clusters: int = 100

    def __post_init__(self):
        if not -1.0 <= self.similarity_threshold <= 1.0:
            raise ValueError(f"similarity_threshold must be within [-1, 1], got {self.similarity_threshold}")
        if self.min_cluster_size < 1:
            raise ValueError(f"min_cluster_size must be >= 1, got {self.min_cluster_size}")
        if self.max_cluster_size < 1:
            raise ValueError(f"max_cluster_size must be >= 1, got {self.max_cluster_size}")
        if self.min_cluster_size > self.max_cluster_size:
            raise ValueError(
                f"min_cluster_size ({self.min_cluster_size}) cannot exceed "
                f"max_cluster_size ({self.max_cluster_size})"
            )
        if self.algorithm not in ALGORITHMS:
            raise ValueError(f"Unknown algorithm: {self.algorithm!r} (expected one of {', '.join(ALGORITHMS)})")
        if self.linkage_type not in LINKAGES:
            raise ValueError(f"Unknown linkage_type: {self.linkage_type!r} (expected one of {', '.join(LINKAGES)})")
        if self.dbscan_epsilon is not None and not 0.0 <= self.dbscan_epsilon <= 2.0:
            raise ValueError(f"dbscan_epsilon must be within [0, 2], got {self.dbscan_epsilon}")
        if self.dbscan_min_points < 1:
            raise ValueError(f"dbscan_min_points must be >= 1, got {self.dbscan_min_points}")
        if self.max_clusters < 1:
            raise ValueError(f"max_clusters must be >= 1, got {self.max_clusters}")

    @property
    def epsilon(self) -> float:
        """DBSCAN neighbourhood radius; derived from the threshold unless set."""
        if self.dbscan_epsilon is not None:
            return self.dbscan_epsilon
        return 1.0 - self.similarity_threshold

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ClusteringOptions":
        """Build options from a full config dict or its ``clustering`` section."""
        section = config.get("clustering", config)
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in section.items():
            name = _OPTION_ALIASES.get(key, key)
            if name in known:
                kwargs[name] = value
            else:
                raise ValueError(f"Unknown clustering option: {key!r}")
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _find_config_file() -> Path | None:
    """Look for config.yaml in standard locations."""
    candidates = [
        Path.cwd() / "config" / "config.yaml",
        Path.cwd() / "config.yaml",
        Path.home() / ".kbcluster" / "config.yaml",
    ]
    for p in candidates:
        if p.exists():
            return p
    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration, merging defaults with file and env vars."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else _find_config_file()
    if path and path.exists():
        with open(path) as f:
            file_cfg = yaml.safe_load(f) or {}
        _deep_merge(cfg, file_cfg)

    # Env overrides
    if home := os.environ.get("KBCLUSTER_HOME"):
        cfg["home"] = home
    if model := os.environ.get("KBCLUSTER_EMBEDDING_MODEL"):
        cfg["embedding_model"] = model

    # Expand paths
    home_path = Path(cfg["home"]).expanduser().resolve()
    cfg["home"] = str(home_path)
    storage = cfg["storage"]
    for key, default in (("state_path", "state"), ("backup_path", "backups"), ("chroma_path", "chroma")):
        value = storage.get(key)
        storage[key] = str(Path(value).expanduser().resolve() if value else home_path / default)

    # Validate early
    ClusteringOptions.from_config(cfg)

    return cfg


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
