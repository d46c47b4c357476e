from setuptools import setup, find_packages

setup(
    name="discovery-scanner",
    version="1.0.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "PyYAML>=6.0",
        "scapy>=2.5.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "discovery-scanner=discovery_scanner.scanner_service:main",
        ],
    },
    python_requires=">=3.11",
)
