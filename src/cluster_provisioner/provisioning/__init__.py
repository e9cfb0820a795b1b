"""Cluster provisioning handlers: generator, dispatcher and import handshake."""
