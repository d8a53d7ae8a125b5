"""
Setup script for the email-opportunity-pipeline project.

Allows development installation with `pip install -e .`
"""

from setuptools import setup, find_packages

setup(
    name="email-opportunity-pipeline",
    version="0.1.0",
    packages=find_packages(include=["src", "src.*"]),
    python_requires=">=3.11",
    install_requires=[
        "langgraph>=0.2",
        "langchain-core>=0.3",
        "langchain-openai>=0.2",
        "firecrawl-py>=4.0",
        "tenacity>=8.2",
        "pydantic>=2.5",
        "python-dotenv>=1.0",
        "json-repair>=0.25",
        "beautifulsoup4>=4.12",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
)
