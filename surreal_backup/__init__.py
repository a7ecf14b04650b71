"""SurrealDB rolling backup service"""

__version__ = "1.0.0"
