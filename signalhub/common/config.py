"""
Configuration Management for SignalHub

Loads configuration from ~/.signalhub/config.json, a local .env file and
environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

logger = logging.getLogger("signalhub.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".signalhub"
CONFIG_PATH = CONFIG_DIR / "config.json"
CACHE_DIR = CONFIG_DIR / "cache"
LOGS_DIR = CONFIG_DIR / "logs"
DATABASE_PATH = CONFIG_DIR / "signalhub.db"

# Known embedding models and their vector dimensions
EMBEDDING_MODEL_DIMENSIONS: Dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


@dataclass
class ClassificationConfig:
    """Embedding and similarity configuration consumed by the correlation core"""
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_provider: str = "openai"  # "openai" or "femb" (fastembed, on-device)
    embedding_dimensions: int = 1536
    openai_api_key: str = ""
    use_semantic_classification: bool = False
    min_similarity_percent: float = 60.0
    min_similarity_cosine: float = 0.5
    max_group_size: int = 10
    duplicate_threshold: float = 0.9
    top_k: int = 5
    batch_size: int = 10
    batch_delay_ms: int = 1000
    item_delay_ms: int = 100


@dataclass
class GitHubConfig:
    """GitHub credentials for the token manager"""
    tokens: List[str] = field(default_factory=list)
    app_id: str = ""
    installation_ids: List[str] = field(default_factory=list)
    private_key_path: str = ""
    owner: str = ""
    repo: str = ""


@dataclass
class StorageConfig:
    """Durable store and flat-file cache locations"""
    database_path: str = str(DATABASE_PATH)
    cache_dir: str = str(CACHE_DIR)


@dataclass
class TriageConfig:
    """Score breakpoints mapping a triage confidence to a result"""
    bug_high: float = 0.70
    bug: float = 0.50
    unclear: float = 0.35
    config: float = 0.20
    question: float = 0.10


@dataclass
class LearningConfig:
    """Historical fix retrieval configuration"""
    max_diff_chars: int = 3000
    max_similar_fixes: int = 5
    candidate_pool: int = 100
    seed_batch_size: int = 50
    subsystem_patterns: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class ServerConfig:
    """HTTP surface configuration"""
    host: str = "0.0.0.0"
    port: int = 8090


@dataclass
class SignalHubConfig:
    """Main SignalHub configuration"""
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    triage: TriageConfig = field(default_factory=TriageConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _split_csv(value: Optional[str]) -> List[str]:
    """Split a comma-separated env value, dropping blanks"""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def resolve_embedding_model(model: Optional[str]) -> str:
    """Return a known embedding model, falling back to the default"""
    if not model:
        return DEFAULT_EMBEDDING_MODEL
    if model not in EMBEDDING_MODEL_DIMENSIONS:
        logger.warning(
            "Unknown embedding model %r, using %s (valid: %s)",
            model, DEFAULT_EMBEDDING_MODEL, ", ".join(EMBEDDING_MODEL_DIMENSIONS),
        )
        return DEFAULT_EMBEDDING_MODEL
    return model


def _parse_classification_config(data: dict) -> ClassificationConfig:
    """Parse classification section from config dict"""
    section = data.get("classification", {})
    model = section.get("embedding_model", DEFAULT_EMBEDDING_MODEL)
    provider = section.get("embedding_provider", "openai")
    if provider == "openai":
        model = resolve_embedding_model(model)
    return ClassificationConfig(
        embedding_model=model,
        embedding_provider=provider,
        embedding_dimensions=section.get(
            "embedding_dimensions", EMBEDDING_MODEL_DIMENSIONS.get(model, 1536)
        ),
        openai_api_key=section.get("openai_api_key", ""),
        use_semantic_classification=section.get("use_semantic_classification", False),
        min_similarity_percent=section.get("min_similarity_percent", 60.0),
        min_similarity_cosine=section.get("min_similarity_cosine", 0.5),
        max_group_size=section.get("max_group_size", 10),
        duplicate_threshold=section.get("duplicate_threshold", 0.9),
        top_k=section.get("top_k", 5),
        batch_size=section.get("batch_size", 10),
        batch_delay_ms=section.get("batch_delay_ms", 1000),
        item_delay_ms=section.get("item_delay_ms", 100),
    )


def _parse_github_config(data: dict) -> GitHubConfig:
    """Parse github section from config dict"""
    section = data.get("github", {})
    return GitHubConfig(
        tokens=[t for t in section.get("tokens", []) if t],
        app_id=section.get("app_id", ""),
        installation_ids=[str(i) for i in section.get("installation_ids", [])],
        private_key_path=section.get("private_key_path", ""),
        owner=section.get("owner", ""),
        repo=section.get("repo", ""),
    )


def _parse_storage_config(data: dict) -> StorageConfig:
    """Parse storage section from config dict"""
    section = data.get("storage", {})
    return StorageConfig(
        database_path=section.get("database_path", str(DATABASE_PATH)),
        cache_dir=section.get("cache_dir", str(CACHE_DIR)),
    )


def _parse_triage_config(data: dict) -> TriageConfig:
    """Parse triage breakpoints from config dict"""
    section = data.get("triage", {})
    return TriageConfig(
        bug_high=section.get("bug_high", 0.70),
        bug=section.get("bug", 0.50),
        unclear=section.get("unclear", 0.35),
        config=section.get("config", 0.20),
        question=section.get("question", 0.10),
    )


def _parse_learning_config(data: dict) -> LearningConfig:
    """Parse learning section from config dict"""
    section = data.get("learning", {})
    return LearningConfig(
        max_diff_chars=section.get("max_diff_chars", 3000),
        max_similar_fixes=section.get("max_similar_fixes", 5),
        candidate_pool=section.get("candidate_pool", 100),
        seed_batch_size=section.get("seed_batch_size", 50),
        subsystem_patterns=section.get("subsystem_patterns", {}),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    section = data.get("server", {})
    return ServerConfig(
        host=section.get("host", "0.0.0.0"),
        port=section.get("port", 8090),
    )


def load_config() -> SignalHubConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (including a .env file in the working directory)
    2. Config file (~/.signalhub/config.json)
    3. Default values
    """
    load_dotenv()
    config = SignalHubConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.classification = _parse_classification_config(data)
            config.github = _parse_github_config(data)
            config.storage = _parse_storage_config(data)
            config.triage = _parse_triage_config(data)
            config.learning = _parse_learning_config(data)
            config.server = _parse_server_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file: %s", e)

    cls = config.classification

    if os.getenv("OPENAI_API_KEY"):
        cls.openai_api_key = os.getenv("OPENAI_API_KEY")
        config._env_sourced_keys.add("openai_api_key")
    if os.getenv("OPENAI_EMBEDDING_MODEL"):
        cls.embedding_model = resolve_embedding_model(os.getenv("OPENAI_EMBEDDING_MODEL"))
        cls.embedding_dimensions = EMBEDDING_MODEL_DIMENSIONS[cls.embedding_model]

    # Semantic matching is on whenever a key exists, unless explicitly disabled
    semantic_flag = os.getenv("USE_SEMANTIC_CLASSIFICATION")
    if semantic_flag is not None:
        cls.use_semantic_classification = (
            semantic_flag.lower() != "false" and bool(cls.openai_api_key)
        )
    elif cls.openai_api_key and cls.embedding_provider == "openai":
        cls.use_semantic_classification = True

    github_tokens = _split_csv(os.getenv("GITHUB_TOKEN"))
    if github_tokens:
        config.github.tokens = github_tokens
        config._env_sourced_keys.add("tokens")
    if os.getenv("GITHUB_APP_ID"):
        config.github.app_id = os.getenv("GITHUB_APP_ID")
    if os.getenv("GITHUB_APP_INSTALLATION_ID"):
        config.github.installation_ids = _split_csv(os.getenv("GITHUB_APP_INSTALLATION_ID"))
    if os.getenv("GITHUB_APP_PRIVATE_KEY_PATH"):
        config.github.private_key_path = os.getenv("GITHUB_APP_PRIVATE_KEY_PATH")
    if os.getenv("GITHUB_OWNER"):
        config.github.owner = os.getenv("GITHUB_OWNER")
    if os.getenv("GITHUB_REPO"):
        config.github.repo = os.getenv("GITHUB_REPO")

    if os.getenv("SIGNALHUB_DB_PATH"):
        config.storage.database_path = os.getenv("SIGNALHUB_DB_PATH")
    if os.getenv("SIGNALHUB_CACHE_DIR"):
        config.storage.cache_dir = os.getenv("SIGNALHUB_CACHE_DIR")
    if os.getenv("SIGNALHUB_PORT"):
        config.server.port = int(os.getenv("SIGNALHUB_PORT"))

    return config


def save_config(config: SignalHubConfig) -> None:
    """Save configuration to file.

    Secrets that were sourced from environment variables are written
    as empty values so that they are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())
    cls = config.classification

    data = {
        "classification": {
            "embedding_model": cls.embedding_model,
            "embedding_provider": cls.embedding_provider,
            "embedding_dimensions": cls.embedding_dimensions,
            "openai_api_key": "" if "openai_api_key" in env_sourced else cls.openai_api_key,
            "use_semantic_classification": cls.use_semantic_classification,
            "min_similarity_percent": cls.min_similarity_percent,
            "min_similarity_cosine": cls.min_similarity_cosine,
            "max_group_size": cls.max_group_size,
            "duplicate_threshold": cls.duplicate_threshold,
            "top_k": cls.top_k,
            "batch_size": cls.batch_size,
            "batch_delay_ms": cls.batch_delay_ms,
            "item_delay_ms": cls.item_delay_ms,
        },
        "github": {
            "tokens": [] if "tokens" in env_sourced else config.github.tokens,
            "app_id": config.github.app_id,
            "installation_ids": config.github.installation_ids,
            "private_key_path": config.github.private_key_path,
            "owner": config.github.owner,
            "repo": config.github.repo,
        },
        "storage": {
            "database_path": config.storage.database_path,
            "cache_dir": config.storage.cache_dir,
        },
        "triage": {
            "bug_high": config.triage.bug_high,
            "bug": config.triage.bug,
            "unclear": config.triage.unclear,
            "config": config.triage.config,
            "question": config.triage.question,
        },
        "learning": {
            "max_diff_chars": config.learning.max_diff_chars,
            "max_similar_fixes": config.learning.max_similar_fixes,
            "candidate_pool": config.learning.candidate_pool,
            "seed_batch_size": config.learning.seed_batch_size,
            "subsystem_patterns": config.learning.subsystem_patterns,
        },
        "server": {
            "host": config.server.host,
            "port": config.server.port,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    CACHE_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
