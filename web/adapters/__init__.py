from .export_adapter import ExportAdapter

__all__ = ["ExportAdapter"]
