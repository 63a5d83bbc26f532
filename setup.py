"""
Prioritizer - Hybrid Evaluator-Optimizer Task Prioritization
Generator/evaluator reasoning loop, session persistence and HTTP surface
"""

from setuptools import find_packages, setup

setup(
    name="prioritizer",
    version="1.0.0a0",
    description="Outcome-driven task prioritization with a bounded generator/evaluator loop",
    author="Prioritizer Development Team",
    packages=find_packages(exclude=["tests*", "docs*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.104.0",
        "uvicorn[standard]>=0.30.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "aiosqlite>=0.19.0",
        "httpx>=0.25.0",
        "openai>=1.0.0",
        "anthropic>=0.25.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "mypy>=1.5.0",
            "black>=23.9.0",
            "ruff>=0.0.290",
        ],
    },
)
