"""Pydantic request/response schemas for the alarm audio API."""
