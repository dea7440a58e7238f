"""Database, vector index and blob store clients.

Imports are intentionally NOT eagerly loaded here to avoid pulling in
third-party SDKs (qdrant_client, httpx) during test collection.
Use explicit imports: ``from app.db.qdrant import QdrantService``, etc.
"""
