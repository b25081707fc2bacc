"""Band strategies. Every module here is imported by ``registry.discover()``."""
