from .catalog import CatalogProtocol

__all__ = ["CatalogProtocol"]
