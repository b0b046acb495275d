"""
Survey Link Guard Services Layer

Wiring of stores, collaborator clients and the core components.
"""

from .container import LinkGuardServices, build_services

__all__ = ["LinkGuardServices", "build_services"]
