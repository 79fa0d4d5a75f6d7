import os
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables from .env file with explicit path
load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env')

# OpenAI Configuration
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# Webhook Configuration
WEBHOOK_PASSKEY = os.getenv("WEBHOOK_PASSKEY", "your_secure_passkey_here_change_me")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Storage Configuration
SQLITE_PATH = os.getenv("SQLITE_PATH", "database/vector-store.sqlite")
DOCUMENTS_PATH = os.getenv("DOCUMENTS_PATH", "database/wh40k-documents")
BASE_DOCUMENTS_PATH = os.getenv("BASE_DOCUMENTS_PATH", "database/base-documents")

# RAG Configuration
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))
MAX_CONTEXT_LENGTH = int(os.getenv("MAX_CONTEXT_LENGTH", "8000"))
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.7"))
MAX_RESULTS = int(os.getenv("MAX_RESULTS", "5"))
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o-mini")
# Characters sent to the embedding endpoint per input
EMBEDDING_INPUT_LIMIT = int(os.getenv("EMBEDDING_INPUT_LIMIT", "8000"))
MAX_COMPLETION_TOKENS = int(os.getenv("MAX_COMPLETION_TOKENS", "300"))
GENERATION_TEMPERATURE = float(os.getenv("GENERATION_TEMPERATURE", "0.7"))
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "60"))

# Concurrency Gate Configuration
#
# Fixed window: RATE_LIMIT_MAX_REQUESTS gated requests per user per window.
RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "3"))
RATE_LIMIT_SWEEP_INTERVAL_SECONDS = float(os.getenv("RATE_LIMIT_SWEEP_INTERVAL_SECONDS", "60"))
TASK_MAX_AGE_SECONDS = float(os.getenv("TASK_MAX_AGE_SECONDS", "300"))  # 5 minutes
TASK_SWEEP_INTERVAL_SECONDS = float(os.getenv("TASK_SWEEP_INTERVAL_SECONDS", "300"))

# Document Ingestion Configuration
ALLOWED_DOMAINS = [
    d.strip().lower()
    for d in os.getenv(
        "ALLOWED_DOMAINS",
        "wh40k.lexicanum.com,warhammer40k.fandom.com,warhammer-community.com,1d4chan.org,reddit.com",
    ).split(",")
    if d.strip()
]
MIN_DOCUMENT_LENGTH = int(os.getenv("MIN_DOCUMENT_LENGTH", "100"))
DOWNLOAD_TIMEOUT_SECONDS = float(os.getenv("DOWNLOAD_TIMEOUT_SECONDS", "60"))
