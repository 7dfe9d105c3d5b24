"""Global constants used across Blueprints."""

# Embeddings / Retrieval
EMBED_DIM: int = 768  # fixed for the whole blueprints.embedding column
DEFAULT_SEARCH_LIMIT: int = 10
DEFAULT_LIST_LIMIT: int = 100
DEFAULT_IVFFLAT_PROBES: int = 10

# Provider ids
PROVIDER_LOCAL = "local"
PROVIDER_OLLAMA = "ollama"
PROVIDER_OPENAI = "openai"

# Blueprint column defaults
DEFAULT_LANGUAGE = "ruby"
DEFAULT_FILE_TYPE = ".rb"
DEFAULT_BLUEPRINT_TYPE = "code"
DEFAULT_PARSER_TYPE = "ruby"

# Schema
REQUIRED_TABLES = ("blueprints", "categories", "blueprint_categories")
ANN_INDEX_NAME = "idx_blueprints_embedding_cosine"

# Metadata key set when a blueprint was stored with the zero-vector fallback
DEGRADED_EMBEDDING_KEY = "embedding_degraded"

# Paths (relative to repo root)
LOGS_DIR = "logs"
