"""Setup configuration for Modguard."""

from setuptools import setup, find_packages

setup(
    name="modguard",
    version="0.1.0",
    description="A chat moderation bot that combines flood detection with AI judgement",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "py-cord>=2.6",
        "openai>=1.99",
        "aiosqlite>=0.20",
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
        "prompt_toolkit>=3.0",
        "jsonschema>=4.20",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "modguard=modguard.main:main",
        ],
    },
)
