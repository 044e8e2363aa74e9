"""Live, laid-out client mirror of a remote agent fleet."""

from hub_mirror.hub import HubMirror, create_hub

__all__ = ["HubMirror", "create_hub"]
