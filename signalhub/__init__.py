"""
SignalHub

Signal ingestion, correlation and triage for community support channels.

Philosophy:
- Chat threads and issues are normalized into Signals before anything else
- Embeddings are expensive: never pay twice for unchanged content
- Two similarity scales (0-100 percent, 0.0-1.0 cosine) are never mixed
- Every batch returns a summary, partial success is always observable

Usage:
    from signalhub.common import load_config, EmbeddingCache, EmbeddingService
    from signalhub.common.schemas import Signal, Group, TriageOutcome
    from signalhub.correlate import Classifier, group_signals, find_duplicates
    from signalhub.learning import TriageEngine, SimilarFixRetriever
"""

__version__ = "0.1.0"
