"""Media Chunk Pipeline - Core application modules.

Provides:
- Blob store (filesystem and in-memory) for temp chunks and merged artifacts
- SQLite models and record/merge-lock primitives
- Chunk merge, processing orchestrator and analysis provider client
- Core utilities: atomic_io, paths
"""

__version__ = "0.1.0"
