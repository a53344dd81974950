"""Utility helpers: logging, retry/fault classification and JSON Patch builders."""
