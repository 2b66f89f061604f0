"""
Setup script for the Sales Navigator lead runner.

Allows development installation with `pip install -e .`
"""

from setuptools import setup, find_packages

setup(
    name="salesnav-lead-runner",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "pydantic>=2",
        "pydantic-settings",
        "python-dotenv",
        "tenacity",
        "playwright",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
