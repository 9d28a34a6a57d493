from setuptools import setup, find_namespace_packages

setup(
    name="dreamjournal",
    version="1.0.0",
    packages=find_namespace_packages(include=["dreamjournal", "dreamjournal.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "sqlalchemy[asyncio]>=2.0",
        "aiosqlite>=0.19",
        "asyncpg>=0.29",
        "httpx>=0.27",
        "cryptography>=42.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
    },
)
