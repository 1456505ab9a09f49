#!/usr/bin/env python
"""Setup configuration for phi-guard."""

from setuptools import find_packages, setup

setup(
    name="phi-guard",
    version="0.1.0",
    description="Session lifecycle, RBAC policy and PHI field encryption core",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.104.1",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.0.0",
        "sqlalchemy>=2.0.23",
        "cryptography>=41.0.0",
        "structlog>=23.2.0",
        "tenacity>=8.2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "phi-guard=phi_guard.cli:main",
        ],
    },
)
