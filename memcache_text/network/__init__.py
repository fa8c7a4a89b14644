"""Network module for memcache-text."""
