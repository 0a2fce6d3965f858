"""Concurrent stress testing for Livepeer LLM and image generation gateways."""

__version__ = "0.1.0"
