"""Media Chunk Pipeline - Upload API service.

FastAPI service for chunked uploads: chunk intake, merge, and hand-off of
the merged artifact to the processing queue.
"""

__all__: list[str] = []
