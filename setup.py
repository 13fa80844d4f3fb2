from setuptools import setup, find_packages

setup(
    name="kg-builder",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
        # Structural parsing
        "networkx>=3.0",
        "tree-sitter>=0.22",
        "tree-sitter-python",
        "tree-sitter-javascript",
        "tree-sitter-typescript",
        # Stores
        "neo4j>=5.8",
        "qdrant-client>=1.10",
        # Semantic enrichment
        "openai>=1.0",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "kg-builder=kg_builder.cli:main",
        ],
    },
    description="Builds a knowledge graph and vector index from a source repository.",
)
