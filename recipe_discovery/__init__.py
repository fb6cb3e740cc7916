"""Recipe discovery REST API: catalog, saved recipes and achievements."""

__version__ = "1.0.0"
