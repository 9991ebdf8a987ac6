"""
SignalHub Server

FastAPI surface over the correlation and learning core. Pull/batch only:
callers post already-normalized signals and issues.

Endpoints:
- GET /health: Health check
- POST /group: Group signals, find duplicates, match features
- POST /classify: Rank candidates for one signal
- POST /triage: Score an issue
- POST /similar-fixes: Historical fixes similar to an issue
- POST /investigate: Triage plus similar fixes plus a recommendation
- GET /tokens: Quota per configured GitHub credential
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .common.config import SignalHubConfig, ensure_directories, load_config
from .common.embedding_cache import EmbeddingCache
from .common.embedding_service import EmbeddingService
from .common.schemas.records import EmbeddingKind, Feature, IssueContext
from .common.schemas.signal import Signal
from .common.store import SQLiteStore
from .common.token_manager import TokenManager
from .correlate.classifier import Candidate, ClassificationMatch, features_to_candidates
from .correlate.pipeline import CorrelationPipeline, PipelineReport
from .learning.investigate import investigate
from .learning.retrieval import SimilarFixRetriever
from .learning.triage import TriageEngine

logger = logging.getLogger("signalhub.server")


# Global state
config: Optional[SignalHubConfig] = None
store: Optional[SQLiteStore] = None
embedding_service: Optional[EmbeddingService] = None
cache: Optional[EmbeddingCache] = None
pipeline: Optional[CorrelationPipeline] = None
triage_engine: Optional[TriageEngine] = None
retriever: Optional[SimilarFixRetriever] = None
token_manager: Optional[TokenManager] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup"""
    global config, store, embedding_service, cache, pipeline, triage_engine, retriever, token_manager

    logger.info("Starting up...")
    ensure_directories()
    config = load_config()
    classification = config.classification

    store = SQLiteStore(config.storage.database_path)
    try:
        store.init_db()
        logger.info("Durable store ready (%s)", config.storage.database_path)
    except Exception as e:
        logger.warning("Durable store failed, continuing with flat-file cache: %s", e)
        store = None

    embedding_service = EmbeddingService(
        mode=classification.embedding_provider,
        model=classification.embedding_model,
        api_key=classification.openai_api_key or None,
        dimensions=classification.embedding_dimensions,
    )
    cache = EmbeddingCache(
        model=classification.embedding_model,
        store=store,
        cache_dir=config.storage.cache_dir,
        dimensions=classification.embedding_dimensions,
    )
    pipeline = CorrelationPipeline(classification, cache, embedding_service)
    triage_engine = TriageEngine(config.triage)
    if store is not None:
        retriever = SimilarFixRetriever(store, cache, embedding_service, config.learning)

    token_manager = TokenManager.from_config(config.github)
    logger.info(
        "Ready (semantic=%s, tokens=%d)",
        pipeline.classifier.semantic_enabled,
        token_manager.token_count if token_manager else 0,
    )

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title="SignalHub",
    description="Signal correlation, issue triage and similar-fix retrieval",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# Request Models
# =============================================================================

class GroupRequest(BaseModel):
    signals: List[Signal]
    features: List[Feature] = Field(default_factory=list)
    min_similarity: Optional[float] = None
    max_groups: Optional[int] = None


class CandidateIn(BaseModel):
    id: str
    text: str
    kind: str = EmbeddingKind.ISSUE.value
    label: Optional[str] = None


class ClassifyRequest(BaseModel):
    signal: Signal
    candidates: List[CandidateIn] = Field(default_factory=list)
    features: List[Feature] = Field(default_factory=list)
    min_similarity: Optional[float] = None
    top_k: Optional[int] = None


class IssueRequest(BaseModel):
    issue: IssueContext
    max_results: Optional[int] = None


# =============================================================================
# Serialization
# =============================================================================

def _match_json(match: ClassificationMatch) -> Dict[str, object]:
    return {
        "candidate_id": match.candidate_id,
        "score": match.score,
        "scale": match.scale.value,
        "method": match.method,
        "matched_terms": match.matched_terms,
    }


def _report_json(report: PipelineReport) -> Dict[str, object]:
    return {
        "summary": report.summary.model_dump(mode="json"),
        "groups": [g.model_dump(mode="json") for g in report.grouping.groups],
        "ungrouped": [u.model_dump(mode="json") for u in report.grouping.ungrouped],
        "duplicates": [g.model_dump(mode="json") for g in report.duplicates],
        "feature_matches": {
            key: [_match_json(m) for m in matches]
            for key, matches in report.feature_matches.items()
        },
    }


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "signalhub",
        "initialized": pipeline is not None,
        "semantic": pipeline.classifier.semantic_enabled if pipeline else False,
        "embedding_available": embedding_service.is_available if embedding_service else False,
        "durable_store": cache.durable_available if cache else False,
        "learning": retriever is not None,
        "tokens": token_manager.token_count if token_manager else 0,
    }


@app.post("/group")
async def group(request: GroupRequest):
    """Group related signals and annotate them with matched features"""
    if not pipeline:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")

    try:
        report = await pipeline.run(
            request.signals,
            request.features,
            min_similarity=request.min_similarity,
            max_groups=request.max_groups,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _report_json(report)


@app.post("/classify")
async def classify(request: ClassifyRequest):
    """Rank issue candidates and features for one signal"""
    if not pipeline:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")

    candidates = [Candidate(id=c.id, text=c.text, kind=c.kind, label=c.label) for c in request.candidates]
    candidates.extend(features_to_candidates(request.features))
    if not candidates:
        raise HTTPException(status_code=400, detail="No candidates given")

    try:
        matches = await pipeline.classifier.classify(
            request.signal, candidates, request.min_similarity, request.top_k
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "signal": request.signal.key,
        "semantic": pipeline.classifier.semantic_enabled,
        "matches": [_match_json(m) for m in matches],
    }


@app.post("/triage")
async def triage(request: IssueRequest):
    """Score an issue as bug, config, feature, question or unclear"""
    if not triage_engine:
        raise HTTPException(status_code=503, detail="Triage engine not initialized")
    return triage_engine.triage(request.issue).model_dump(mode="json")


@app.post("/similar-fixes")
async def similar_fixes(request: IssueRequest):
    """Historical bug fixes most similar to an issue"""
    if not retriever:
        raise HTTPException(status_code=503, detail="Learning store not initialized")

    similar = await retriever.find_similar(request.issue, request.max_results)
    return {
        "issue": request.issue.number,
        "similar_fixes": [f.model_dump(mode="json") for f in similar],
        "recommended_patterns": retriever.recommend_patterns(similar),
    }


@app.post("/investigate")
async def investigate_issue(request: IssueRequest):
    """Triage an issue and recommend whether to attempt an automated fix"""
    if not triage_engine:
        raise HTTPException(status_code=503, detail="Triage engine not initialized")

    result = await investigate(request.issue, triage_engine, retriever, request.max_results)
    return result.model_dump(mode="json")


@app.get("/tokens")
async def tokens():
    """Quota per GitHub credential, secrets omitted"""
    if not token_manager:
        raise HTTPException(status_code=503, detail="No GitHub credentials configured")
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "all_exhausted": token_manager.all_exhausted(),
        "tokens": token_manager.status(),
    }


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the SignalHub server"""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config()

    logger.info("Starting server on %s:%d", config.server.host, config.server.port)
    uvicorn.run(
        "signalhub.server:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
