"""Ingestion pipeline stages: decoder, identifiers, batcher, dispatcher, classifier."""
