from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import AsyncIterator, List, Optional

import httpx
from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from feedlens import config
from feedlens.annotation import AnnotationCache, Annotator
from feedlens.constants import (
    DEFAULT_CLUSTER_COUNT,
    DEFAULT_REGION,
    DEFAULT_TOPIC,
    HTTP_CONNECT_TIMEOUT,
    HTTP_POOL_TIMEOUT,
    HTTP_READ_TIMEOUT,
    HTTP_WRITE_TIMEOUT,
    MAX_CLUSTERS,
)
from feedlens.embeddings import EmbeddingFetcher
from feedlens.errors import (
    AnnotationParseError,
    ConfigurationError,
    EmptyResponseError,
    FeedLensError,
    ProviderError,
    ProviderUnavailableError,
)
from feedlens.logging_config import configure_logging, logger
from feedlens.news_client import NewsClient
from feedlens.orchestrator import FeedOrchestrator, FeedRequest
from feedlens.store import AnalysisStore


def build_orchestrator(
    client: httpx.AsyncClient, store: AnalysisStore
) -> FeedOrchestrator:
    llm_key = config.get_llm_api_key()
    return FeedOrchestrator(
        store=store,
        news_client=NewsClient(config.get_news_api_key(), client=client),
        embedder=EmbeddingFetcher(store, client, llm_key),
        annotator=Annotator(client, llm_key, cache=AnnotationCache()),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    load_dotenv()
    configure_logging(config.get_log_level(), config.get_log_format())
    timeout = httpx.Timeout(
        connect=HTTP_CONNECT_TIMEOUT,
        read=HTTP_READ_TIMEOUT,
        write=HTTP_WRITE_TIMEOUT,
        pool=HTTP_POOL_TIMEOUT,
    )
    store = AnalysisStore(config.get_db_path())
    async with httpx.AsyncClient(timeout=timeout) as client:
        app.state.orchestrator = build_orchestrator(client, store)
        logger.info("FeedLens ready", db_path=store.db_path)
        try:
            yield
        finally:
            store.close()


app = FastAPI(title="FeedLens API", lifespan=lifespan)

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_orchestrator(request: Request) -> FeedOrchestrator:
    return request.app.state.orchestrator


_ERROR_STATUS: dict[type[FeedLensError], int] = {
    ConfigurationError: 500,
    ProviderError: 502,
    ProviderUnavailableError: 502,
    AnnotationParseError: 502,
    EmptyResponseError: 502,
}


@app.exception_handler(FeedLensError)
async def feed_error_handler(request: Request, exc: FeedLensError) -> JSONResponse:
    status = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    logger.error("Request failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=status, content={"success": False, "error": str(exc)})


@app.exception_handler(httpx.HTTPError)
async def transport_error_handler(
    request: Request, exc: httpx.HTTPError
) -> JSONResponse:
    logger.error("Upstream request failed", path=request.url.path, error=repr(exc))
    return JSONResponse(
        status_code=502,
        content={"success": False, "error": f"Upstream request failed: {exc!r}"},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400, content={"success": False, "error": str(exc.errors())}
    )


class FeedAnalysisRequest(BaseModel):
    topic: str = DEFAULT_TOPIC
    region: str = DEFAULT_REGION
    page: Optional[str] = None
    num_clusters: int = Field(DEFAULT_CLUSTER_COUNT, ge=1, le=MAX_CLUSTERS)
    article_ids: Optional[List[str]] = None
    use_cache: bool = True


@app.get("/api/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}


@app.get("/api/news")
async def news_route(
    topic: str = DEFAULT_TOPIC,
    country: str = DEFAULT_REGION,
    page: Optional[str] = None,
    orchestrator: FeedOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.news_client.fetch_news(topic, country, page)
    return {
        "success": True,
        "count": len(result.articles),
        "articles": [a.to_dict() for a in result.articles],
        "nextPage": result.next_cursor,
    }


@app.post("/api/feed")
async def feed_route(
    req: FeedAnalysisRequest,
    background_tasks: BackgroundTasks,
    orchestrator: FeedOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.analyze(
        FeedRequest(
            topic=req.topic,
            region=req.region,
            page=req.page,
            num_clusters=req.num_clusters,
            article_ids=req.article_ids,
            use_cache=req.use_cache,
        )
    )
    if result.cached and req.article_ids is None:
        background_tasks.add_task(
            orchestrator.poll_for_new_articles, req.topic, req.region
        )
    return {"success": True, **result.to_dict()}


@app.get("/api/cached")
def cached_route(
    topic: str = DEFAULT_TOPIC,
    region: str = DEFAULT_REGION,
    orchestrator: FeedOrchestrator = Depends(get_orchestrator),
):
    result = orchestrator.cached_snapshot(topic, region)
    if result is None:
        return {
            "success": True,
            "cached": False,
            "articles": [],
            "summary": "",
            "topKeywords": [],
            "clusters": [],
            "sentimentCounts": {"positive": 0, "neutral": 0, "negative": 0},
            "nextPage": None,
        }
    return {"success": True, **result.to_dict()}
