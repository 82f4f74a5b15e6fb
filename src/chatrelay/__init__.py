"""Streaming chat relay backend."""
