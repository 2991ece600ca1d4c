"""Persisted optimization results."""

from cryptolab.storage.parameter_store import JsonlParameterStore, ParameterRecord

__all__ = ["JsonlParameterStore", "ParameterRecord"]
