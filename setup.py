from setuptools import setup, find_packages

setup(
    name="semantic_kb",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests",
        "pyyaml",
        "numpy>=1.24",
        "pypdf>=3.0",
        "tqdm>=4.60",
    ],
    extras_require={
        # Semantic embeddings from a local ONNX model (install separately when needed)
        "semantic": [
            "onnxruntime>=1.16",
            "tokenizers>=0.15",
        ],
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "semantic-kb=semantic_kb.cli:main",
        ],
    },
    description="A local semantic-search knowledge base backed by SQLite.",
)
