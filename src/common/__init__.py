"""Shared configuration, logging, error and persistence helpers."""
