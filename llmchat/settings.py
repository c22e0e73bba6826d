import os


class Settings:
    # Default generation endpoint is a local Ollama server
    DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
    DEFAULT_MODEL = "granite3.1-moe:1b"

    def __init__(self, env=None):
        env = os.environ if env is None else env

        self._data_dir = os.path.abspath(env.get("LLMCHAT_DATA_DIR", os.path.join(os.getcwd(), "data")))
        self._storage_backend = env.get("LLMCHAT_STORAGE_BACKEND", "sql").strip().lower()
        if self._storage_backend not in ("sql", "json"):
            raise ValueError(f"LLMCHAT_STORAGE_BACKEND must be 'sql' or 'json', got {self._storage_backend!r}")
        self._database_path = env.get("DATABASE_PATH", os.path.join(self._data_dir, "llmchat.db"))

        self._ollama_base_url = env.get("OLLAMA_BASE_URL", self.DEFAULT_OLLAMA_BASE_URL).rstrip("/")
        self._default_model = env.get("LLMCHAT_DEFAULT_MODEL", self.DEFAULT_MODEL)

        self.generation_timeout = float(env.get("LLMCHAT_GENERATION_TIMEOUT", "60"))
        self.provider_retries = max(1, int(env.get("LLMCHAT_PROVIDER_RETRIES", "1")))
        self.retry_backoff = float(env.get("LLMCHAT_RETRY_BACKOFF", "0.5"))
        self.worker_concurrency = max(1, int(env.get("LLMCHAT_WORKER_CONCURRENCY", "1")))
        self.worker_poll_interval = float(env.get("LLMCHAT_WORKER_POLL_INTERVAL", "1.0"))
        self.log_level = env.get("LLMCHAT_LOG_LEVEL", "INFO").upper()

    def get_data_dir(self) -> str:
        return self._data_dir

    def get_storage_backend(self) -> str:
        """Returns 'sql' (SQLite through SQLAlchemy) or 'json' (one JSON file per collection)."""
        return self._storage_backend

    def get_database_url(self) -> str:
        if self._database_path == ":memory:":
            return "sqlite://"
        return f"sqlite:///{self._database_path}"

    def get_ollama_base_url(self) -> str:
        """Returns the base URL of the generation server (e.g. 'http://localhost:11434')."""
        return self._ollama_base_url

    def set_ollama_base_url(self, url: str):
        """Switch the generation endpoint at runtime."""
        self._ollama_base_url = url.rstrip("/")

    def get_default_model(self) -> str:
        return self._default_model

    def set_default_model(self, model: str):
        self._default_model = model
