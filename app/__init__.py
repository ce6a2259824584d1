"""Catalog service: item listing and cached aggregate statistics."""
