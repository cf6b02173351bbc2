"""Stream JSON documents into an OpenSearch index through the bulk API."""

__version__ = "1.0.0"
