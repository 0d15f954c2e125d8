from setuptools import setup, find_packages

setup(
    name="windowguard",
    version="0.1.0",
    packages=find_packages(include=["windowguard", "windowguard.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "starlette",
        "pydantic>=2",
        "pydantic-settings>=2.7",
        "redis>=5",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
