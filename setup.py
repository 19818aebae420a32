from setuptools import setup, find_packages

setup(
    name="chainsync",
    version="0.1.0",
    packages=find_packages(include=["blockchain", "cache", "config", "error_handling"]),
    install_requires=[
        "pydantic>=2",
        "pydantic-settings",
        "structlog",
        "redis>=5.0.1",
        "prometheus-client",
    ],
    extras_require={
        "test": [
            "pytest",
            "fakeredis>=2.20",
        ],
    },
    python_requires=">=3.10",
)
