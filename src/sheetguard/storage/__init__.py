"""Durable storage for the engine registries."""

from .store import RegistryStore

__all__ = ["RegistryStore"]
