"""Pydantic schemas for the HTTP surface."""
