"""Importer persistence models."""

from .schema import ImportLog, ImportLogStatus

__all__ = ["ImportLog", "ImportLogStatus"]
