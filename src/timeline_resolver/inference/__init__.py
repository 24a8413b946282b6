"""Inference providers and the cascade that falls back across them."""

from timeline_resolver.inference.base import DEFAULT_PROVIDERS, InferenceProvider, ProviderSpec
from timeline_resolver.inference.cascade import InferenceCascade
from timeline_resolver.inference.factory import ProviderFactory
from timeline_resolver.inference.parsing import coerce_period_payload, extract_json_object, find_brace_blocks

__all__ = [
    "DEFAULT_PROVIDERS",
    "InferenceCascade",
    "InferenceProvider",
    "ProviderFactory",
    "ProviderSpec",
    "coerce_period_payload",
    "extract_json_object",
    "find_brace_blocks",
]
