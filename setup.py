# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Setup configuration for the gateway secrets subsystem."""

from setuptools import setup, find_packages

setup(
    name="gateway-secrets",
    version="0.1.0",
    description="Secret backends, credential caching and key rotation for the gateway",
    author="Copilot-for-Consensus contributors",
    license="MIT",
    packages=find_packages(include=["gateway_logging*", "gateway_secrets*", "gateway_credentials*"]),
    install_requires=[
        "cryptography>=41.0.0",
        "cachetools>=5.3.0",
        "croniter>=1.4.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-mock>=3.10.0",
            "requests>=2.31.0",
        ],
        "aws": [
            "boto3>=1.34.0",
        ],
        "azure": [
            "azure-keyvault-secrets>=4.7.0",
            "azure-keyvault-keys>=4.8.0",
            "azure-identity>=1.12.0",
        ],
        "vault": [
            "hvac>=1.2.0",
            "requests>=2.31.0",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.11",
    ],
)
