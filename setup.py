from setuptools import setup, find_packages

setup(
    name="discogate",
    version="0.1.0",
    packages=find_packages(include=["discogate", "discogate.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "httpx>=0.27",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "sqlalchemy[asyncio]>=2.0",
        "aiosqlite>=0.20",
        "oauthlib>=3.2",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
        "postgres": [
            "asyncpg>=0.29",
        ],
    },
)
