"""Procurement configuration: schema and YAML loader."""

from procurement_config.loader import load_config
from procurement_config.schema import ProcurementConfig

__all__ = ["ProcurementConfig", "load_config"]
