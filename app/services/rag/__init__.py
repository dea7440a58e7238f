"""RAG pipeline: extraction, chunking, embedding, indexing, retrieval, generation.

Nothing is re-exported here, so importing one stage never loads the SDKs
(qdrant_client, pypdf, tiktoken) the other stages depend on. Import
from the stage module directly:
    from app.services.rag.ingestion import IngestionService
    from app.services.rag.retrieval import RetrievalService
"""
