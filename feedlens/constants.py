"""
Constants and configuration values for feed analysis.
"""

# Defaults for a feed request
DEFAULT_TOPIC = "artificial intelligence"
DEFAULT_REGION = "de"
DEFAULT_CLUSTER_COUNT = 3
MAX_CLUSTERS = 10

# News Provider (NewsData.io)
NEWS_API_BASE = "https://newsdata.io/api/1/latest"
NEWS_LANGUAGE = "en"

# Embedding Provider
EMBEDDING_API_URL = "https://openrouter.ai/api/v1/embeddings"
EMBEDDING_MODEL = "openai/text-embedding-3-small"

# Annotation Provider
LLM_API_URL = "https://openrouter.ai/api/v1/chat/completions"
LLM_ANNOTATION_MODEL = "anthropic/claude-sonnet-4"
LLM_TEMPERATURE = 0.2
LLM_ANNOTATION_MAX_TOKENS = 2000
LLM_HTTP_REFERER = "http://localhost:5173"
LLM_HTTP_TITLE = "News Reader Dashboard"

# HTTP Timeouts
HTTP_CONNECT_TIMEOUT = 10.0
HTTP_READ_TIMEOUT = 60.0
HTTP_WRITE_TIMEOUT = 10.0
HTTP_POOL_TIMEOUT = 5.0

# Prompt Limits
ANNOTATION_DESCRIPTION_MAX_CHARS = 200
ANNOTATION_KEYWORD_COUNT = 5
ANNOTATION_SUMMARY_MIN_BULLETS = 3
ANNOTATION_SUMMARY_MAX_BULLETS = 5

# Annotation Cache
ANNOTATION_CACHE_TTL = 300  # 5 minutes

# Clustering
KMEANS_MAX_ITERATIONS = 20
UNASSIGNED_CLUSTER = -1

# Similarity Bounds
SIMILARITY_MIN = -1.0
SIMILARITY_MAX = 1.0

# Feed Snapshot Freshness
FEED_CACHE_MAX_AGE_MINUTES = 30  # Provider-fetched feeds
FEED_CACHE_MIN_COVERAGE = 0.8
ID_SET_CACHE_MAX_AGE_MINUTES = 60  # Explicit article-id sets
ID_SET_CACHE_MIN_COVERAGE = 0.5
CACHED_ENDPOINT_MAX_AGE_MINUTES = 60
CACHED_ENDPOINT_ARTICLE_LIMIT = 50

# Storage
DEFAULT_DB_PATH = "data/news.db"

# Sentiment
SENTIMENTS = ("positive", "neutral", "negative")
DEFAULT_SENTIMENT = "neutral"
