"""
Content Processors Package

This package contains services for turning stored transcripts into
searchable chunks.

Modules:
--------
- transcript_parser: Timestamped transcript text ⇄ timed segments
- chunker: Token-aware transcript chunking
- embedder: Embedding generation using sentence-transformers
"""
