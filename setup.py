"""
Setup script for Sports Pipeline - live sports data collection and monitoring.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

setup(
    name="sports-pipeline",
    version="1.0.0",
    description="Rate-limited live sports data collection, processing and health monitoring",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Sports Pipeline Team",
    packages=find_packages(include=["sports_pipeline", "sports_pipeline.*"]),
    python_requires=">=3.11",
    install_requires=[
        # Shared rate limits and entity storage
        "redis>=5.0.1",

        # HTTP client
        "aiohttp>=3.9.0",

        # Data validation
        "pydantic>=2.5.0",

        # Scheduling
        "apscheduler>=3.10.0,<4",

        # Monitoring and observability
        "prometheus-client>=0.19.0",

        # Utilities
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "black>=23.12.0",
            "mypy>=1.7.0",
            "ruff>=0.1.8",
        ],
    },
    entry_points={
        "console_scripts": [
            "sports-pipeline=sports_pipeline.main:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    include_package_data=True,
    zip_safe=False,
)
