"""Configuration module for memcache-text."""
