from setuptools import setup, find_packages

setup(
    name="zk-shielded-pool",
    version="0.2.0",
    description="Shielded-value pool: note commitments, nullifiers and a Groth16 verification gate",
    author="ZK Pool Team",
    author_email="team@zk-pool.dev",
    url="https://github.com/zk-project/zk-shielded-pool",
    license="MIT",
    python_requires=">=3.11",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "py_ecc>=6.0.0",
        "cryptography>=40.0.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "sqlalchemy>=2.0.0",
        "python-dotenv>=1.0.0",
        "PyJWT>=2.8.0",
        "fastapi>=0.95.0",
    ],
    extras_require={
        "dev": [
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
            "isort>=5.12.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "hypothesis>=6.0.0",
            "httpx>=0.24.0",
        ],
        "api": [
            "uvicorn>=0.21.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
