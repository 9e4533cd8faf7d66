from setuptools import setup, find_namespace_packages

setup(
    name="ecomm-recs",
    version="0.1",
    packages=find_namespace_packages(include=["recommender*", "service*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "uvicorn",
        "prometheus-client",
        "pydantic>=2",
        "pandas",
        "pyarrow",
        "python-dotenv",
        "pyyaml",
        "numpy",
        "scipy",
        "implicit>=0.5",
        "fastavro"
    ],
    extras_require={
        "test": ["pytest", "httpx"],
    },
    entry_points={
        "console_scripts": ["ecomm-recs-serve=service.app:main"],
    },
)
