"""
Configuration — loads settings from .kg-builder.yaml, environment variables,
and built-in defaults (in that priority order: env > YAML > defaults).
"""

import os
import re

import yaml

from .errors import UnknownProjectError
from .models import BuildConfig


_DEFAULTS = {
    "repo_path": "/repo",
    "staging_path": "/staging",
    "repo_url": "",
    "branch": "main",
    "graph_backend": "neo4j",
    "neo4j_url": "bolt://localhost:7687",
    "neo4j_user": "neo4j",
    "neo4j_password": "password",
    "qdrant_url": "http://localhost:6333",
    "vector_size": 768,
    "embedding_provider": "tei",
    "embedding_url": "http://localhost:80",
    "embedding_model": "text-embedding-3-small",
    "openai_api_key": "",
    "openai_model": "gpt-5",
    "openai_base_url": None,
    "enrich_batch_size": 5,
    "enrich_batch_delay": 1.0,
    "default_project": "default",
    "log_level": "INFO",
}

# Config file search locations
_CONFIG_FILENAMES = [".kg-builder.yaml", ".kg-builder.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def normalize_project_id(value: str) -> str:
    """Lower-case *value* and collapse anything outside ``[a-z0-9-_]`` to ``-``."""
    slug = value.strip().lower()
    slug = re.sub(r"[^a-z0-9\-_]", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def collection_name(project_id: str, base_name: str) -> str:
    """Project-qualified store collection name."""
    return f"{project_id}__{base_name}"


class Config:
    """Pipeline configuration.

    Settings are resolved in priority order:
    1. Environment variables
    2. .kg-builder.yaml config file
    3. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        def _section(name: str) -> dict:
            value = yd.get(name)
            return value if isinstance(value, dict) else {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_val, default, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            if yaml_val is not None:
                return cast(yaml_val)
            return default

        repository = _section("repository")
        neo4j = _section("neo4j")
        qdrant = _section("qdrant")
        embedding = _section("embedding")
        openai_section = _section("openai")
        enrich = _section("enrich")

        self.REPO_PATH = _get("REPO_PATH", yd.get("repo_path"), _DEFAULTS["repo_path"])
        self.STAGING_PATH = _get("STAGING_PATH", yd.get("staging_path"),
                                 _DEFAULTS["staging_path"])
        self.REPO_URL = _get("REPO_URL", repository.get("url"), _DEFAULTS["repo_url"])
        self.REPO_BRANCH = _get("REPO_BRANCH", repository.get("branch"),
                                _DEFAULTS["branch"])

        self.GRAPH_BACKEND = _get("GRAPH_BACKEND", yd.get("graph_backend"),
                                  _DEFAULTS["graph_backend"]).lower()
        self.NEO4J_URL = _get("NEO4J_URL", neo4j.get("url"), _DEFAULTS["neo4j_url"])
        self.NEO4J_USER = _get("NEO4J_USER", neo4j.get("user"), _DEFAULTS["neo4j_user"])
        self.NEO4J_PASSWORD = _get("NEO4J_PASSWORD", neo4j.get("password"),
                                   _DEFAULTS["neo4j_password"])

        self.QDRANT_URL = _get("QDRANT_URL", qdrant.get("url"), _DEFAULTS["qdrant_url"])
        self.VECTOR_SIZE = _get("VECTOR_SIZE", qdrant.get("vector_size"),
                                _DEFAULTS["vector_size"], cast=int)

        self.EMBEDDING_PROVIDER = _get("EMBEDDING_PROVIDER", embedding.get("provider"),
                                       _DEFAULTS["embedding_provider"]).lower()
        self.EMBEDDING_URL = _get("EMBEDDING_URL", embedding.get("url"),
                                  _DEFAULTS["embedding_url"])
        self.EMBEDDING_MODEL = _get("EMBEDDING_MODEL", embedding.get("model"),
                                    _DEFAULTS["embedding_model"])

        self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY") or openai_section.get(
            "api_key", _DEFAULTS["openai_api_key"])
        self.OPENAI_MODEL = os.getenv("OPENAI_MODEL") or openai_section.get(
            "model", _DEFAULTS["openai_model"])
        self.OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or openai_section.get(
            "base_url", _DEFAULTS["openai_base_url"])

        self.ENRICH_BATCH_SIZE = _get("ENRICH_BATCH_SIZE", enrich.get("batch_size"),
                                      _DEFAULTS["enrich_batch_size"], cast=int)
        self.ENRICH_BATCH_DELAY = _get("ENRICH_BATCH_DELAY", enrich.get("batch_delay"),
                                       _DEFAULTS["enrich_batch_delay"], cast=float)

        self.LOG_LEVEL = _get("LOG_LEVEL", yd.get("log_level"),
                              _DEFAULTS["log_level"]).upper()

        default_project = _get("DEFAULT_PROJECT", yd.get("default_project"),
                               _DEFAULTS["default_project"])
        self.DEFAULT_PROJECT = normalize_project_id(default_project) or "default"

        projects = yd.get("projects", [])
        if not isinstance(projects, list):
            projects = []
        known = {normalize_project_id(str(p)) for p in projects}
        known.discard("")
        known.add(self.DEFAULT_PROJECT)
        self.PROJECTS: list[str] = sorted(known)

    def resolve_project_id(self, raw: str | None = None) -> str:
        """Map a requested project name to a known, normalized project id."""
        if not raw:
            return self.DEFAULT_PROJECT
        candidate = normalize_project_id(raw)
        if not candidate:
            return self.DEFAULT_PROJECT
        if candidate not in self.PROJECTS:
            raise UnknownProjectError(f"Unknown project '{raw}'")
        return candidate

    def build_config(
        self,
        mode: str,
        project_id: str,
        base_commit: str | None = None,
    ) -> BuildConfig:
        """Return the immutable per-build settings."""
        return BuildConfig(
            repo_path=self.REPO_PATH,
            staging_path=self.STAGING_PATH,
            mode=mode,
            project_id=project_id,
            base_commit=base_commit,
        )

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
