"""Database models package."""
from bookmark_importer.db.models.import_job import ChunkStatus, ImportChunk, ImportJob, JobStatus

__all__ = ["ImportJob", "ImportChunk", "JobStatus", "ChunkStatus"]
