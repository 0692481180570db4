"""
Game Commander — provisioning and lifecycle orchestration for
containerized game servers.
"""

__version__ = "0.1.0"
