# ai/prompts/__init__.py
from ai.prompts.semantic_domains import SEMANTIC_ANNOTATION, SEMANTIC_DOMAINS
from ai.prompts.enrichment import METADATA_ENRICHMENT

__all__ = ["SEMANTIC_ANNOTATION", "SEMANTIC_DOMAINS", "METADATA_ENRICHMENT"]
