"""Utility helpers for the Qiniu HTTP client."""
