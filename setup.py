from __future__ import annotations

from setuptools import setup


def load_dependencies() -> list[str]:
    """Assemble install_requires for the gateway client."""
    return [
        # HTTP transport
        "aiohttp>=3.8.0",
        "yarl>=1.8.0",
        # Payload validation
        "pydantic>=2.0.0",
    ]


setup(install_requires=load_dependencies())
