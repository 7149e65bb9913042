"""Gemini planning and extraction collaborator."""
