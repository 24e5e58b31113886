from setuptools import setup, find_packages

setup(
    name="tessie_assistant",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"tessie_assistant.services": ["*.yaml"]},
    install_requires=[
        "fastapi",
        "uvicorn",
        "httpx",
        "pydantic>=2",
        "python-dotenv",
        "pyyaml"
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
)
