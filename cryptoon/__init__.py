"""
Cryptoon
========
Pay-per-chapter web comics backend with an autonomous USDC purchasing agent.

Usage:
    from cryptoon.gateway_server import create_app
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
