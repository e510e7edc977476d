from setuptools import setup, find_packages

setup(
    name="promptlab",
    version="0.1.0",
    description="Dependency-ordered execution of LLM task workflows",
    author="PromptLab Team",
    packages=find_packages(include=["promptlab", "promptlab.*"]),
    install_requires=[
        "pydantic>=2.5.0",
        "PyYAML>=6.0",
        "RestrictedPython>=8.0",
        "openai>=1.40.0",
        "click>=8.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
            "black>=22.0.0",
            "isort>=5.0.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "promptlab=promptlab.cli:main",
        ],
    },
    python_requires=">=3.10",
)
