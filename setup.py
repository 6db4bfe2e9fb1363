"""Setup configuration for Spam Crasher."""

from setuptools import setup, find_packages

setup(
    name="spamcrasher",
    version="0.0.1",
    description="A moderation decision engine for group chats using AI spam classification",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "openai>=1.40",
        "anthropic>=0.34",
        "aiosqlite>=0.20",
        "redis>=5.0",
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
        "jsonschema>=4.0",
        "prompt_toolkit>=3.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx",
        ],
    },
    entry_points={
        "console_scripts": [
            "spamcrasher=spamcrasher.main:main",
        ],
    },
)
