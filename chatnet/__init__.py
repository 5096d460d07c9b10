"""JSON-over-TCP chat server, console client, SQLite storage and message brokers."""

__version__ = "0.1.0"