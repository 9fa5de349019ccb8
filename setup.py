from setuptools import setup, find_packages


setup(
    name="pharpack",
    version="0.1",
    packages=find_packages(exclude=["pharpack.tests", "pharpack.tests.*"]),
    description="Extract and repack PHAR installer bundles while keeping their compression, metadata and signature characteristics.",
    author="pharpack contributors",
    install_requires=[
        "pycryptodomex>=3.23.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "pharpack=pharpack.cli:main",
        ]
    },
)
