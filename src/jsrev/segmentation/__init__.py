"""Lexical boundary scanning and chunk building."""

from jsrev.segmentation.types import BoundaryKind, BoundaryMark, Chunk, ChunkType, RunNote
from jsrev.segmentation.scanner import BoundaryScanner
from jsrev.segmentation.builder import ChunkBuilder, ChunkPlan, build_chunks, chunk_id, classify_chunk

__all__ = [
    "BoundaryKind",
    "BoundaryMark",
    "BoundaryScanner",
    "Chunk",
    "ChunkBuilder",
    "ChunkPlan",
    "ChunkType",
    "RunNote",
    "build_chunks",
    "chunk_id",
    "classify_chunk",
]
