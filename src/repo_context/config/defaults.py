"""Default configuration values for repo-context."""

# Files loaded first into every chat context
DEFAULT_REFERENCE_FILES = ["README.md", "Gemfile"]

# Tried only when none of the reference files exist
DEFAULT_FALLBACK_CONTEXT_FILES = ["README.md", "Gemfile", "package.json"]

DEFAULT_CONTEXT_MAX_CHARS = 35_000

# Directories scanned (besides the root) when listing discovery candidates
DEFAULT_DISCOVERY_DIRS = ["app", "lib", "config", "docs", "src"]

# Extensions offered to the discovery step
DEFAULT_DISCOVERY_EXTENSIONS = [
    ".rb",
    ".py",
    ".md",
    ".json",
    ".js",
    ".ts",
    ".yml",
    ".yaml",
    ".toml",
]

CANDIDATE_PATHS_MAX = 80
DISCOVERY_PATHS_MAX = 5

# Only the first N candidates are shown to the discovery prompt
DISCOVERY_PROMPT_PATHS_LIMIT = 60

# Ollama defaults
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama3.1:8b"
DEFAULT_OLLAMA_EMBED_MODEL = "nomic-embed-text"
DEFAULT_OLLAMA_TIMEOUT = 60.0
DEFAULT_OLLAMA_TEMPERATURE = 0.5
DEFAULT_OLLAMA_RETRIES = 2

# Embedding index defaults (sizes in characters)
DEFAULT_EMBED_TOP_K = 5
DEFAULT_EMBED_CHUNK_SIZE = 2000
DEFAULT_EMBED_CHUNK_OVERLAP = 200
DEFAULT_EMBED_MAX_CHUNKS = 100
DEFAULT_EMBED_MIN_QUESTION_LENGTH = 10

# Vector store location, relative to the repository root
VECTOR_STORE_FILENAME = ".repo_context/index.db"

# Review loop defaults
DEFAULT_REVIEW_MAX_ITERATIONS = 20
DEFAULT_REVIEW_MAX_PATHS = 30
DEFAULT_REVIEW_MAX_FILE_SIZE = 100_000
DEFAULT_REVIEW_FOCUS = (
    "Clean code: clear names, single responsibility, short methods, "
    "guard clauses, no deep nesting"
)

# Paths never handed to the reviewer (fnmatch globs against the relative path
# and each of its components)
DEFAULT_REVIEW_EXCLUDED_PATTERNS = [
    ".git",
    "node_modules",
    "vendor",
    "tmp",
    "log",
    "coverage",
    "__pycache__",
    ".venv",
    ".repo_context",
    "*.min.js",
    "*.lock",
]

# Extensions treated as binary and never reviewed
BINARY_EXTENSIONS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".ico",
    ".bmp",
    ".webp",
    ".pdf",
    ".zip",
    ".gz",
    ".tar",
    ".jar",
    ".so",
    ".dylib",
    ".dll",
    ".exe",
    ".bin",
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
    ".mp3",
    ".mp4",
    ".db",
    ".sqlite",
    ".sqlite3",
    ".pyc",
    ".class",
}

# Conventional locations probed for "<Name> model" style phrases in a question
BOOST_PATH_TEMPLATES = [
    "app/models/{snake}.rb",
    "lib/{snake}.rb",
    "app/services/{snake}.rb",
    "src/{snake}.py",
    "{snake}.py",
]

# Cache defaults
DEFAULT_CACHE_NAMESPACE = "repocontext"
DEFAULT_CACHE_TTL_SECONDS = 3600
