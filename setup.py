from setuptools import setup, find_packages

setup(
    name="querygate",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*", "scripts"]),
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2.0",
        "python-dotenv",
        "supabase",
        "httpx",
        "tenacity",
        "asyncpg",
        "aiomysql",
        "pymongo>=4.9",
        "sqlglot"
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx"
        ]
    },
    python_requires=">=3.10",
    author="Your Name",
    author_email="your.email@example.com",
    description="HTTP gateway for querying, bucketing and syncing external Postgres, MySQL and MongoDB databases",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
