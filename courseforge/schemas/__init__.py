"""Pydantic schemas for job configs, API payloads and structured model output."""
