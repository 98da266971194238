"""
hybridrag Setup Script

Install with: pip install -e .
"""

from setuptools import setup, find_packages

setup(
    name='hybridrag',
    version='0.1.0',
    description='Hybrid retrieval engine: HNSW vectors, BM25, score fusion and graph reranking',
    author='hybridrag contributors',
    packages=find_packages(include=['hybridrag', 'hybridrag.*']),
    package_data={
        'hybridrag.config': ['defaults.yaml'],
    },
    include_package_data=True,
    install_requires=[
        'numpy>=1.26.0',
        'pydantic>=2.5.0',
        'pyyaml>=6.0.1',
        'structlog>=23.1.0',
        'aiohttp>=3.9.0',
        'click>=8.1.0',
    ],
    extras_require={
        'embeddings': [
            'sentence-transformers>=2.2.0',
        ],
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.21.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'hybridrag=hybridrag.cli:cli',
        ],
    },
    python_requires='>=3.11',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Scientific/Engineering :: Artificial Intelligence',
        'Topic :: Text Processing :: Indexing',
    ],
)
