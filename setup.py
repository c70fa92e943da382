"""
Setup script for voice-tutor.

Voice Tutor runs hands-free Anki review sessions: due cards are loaded
from AnkiConnect and a realtime voice agent asks each question, grades
the spoken answer and moves on, while the session engine keeps the
authoritative queue, phase and score.

The 'voice-tutor' command is the entry point.
"""

from setuptools import find_namespace_packages, setup

setup(
    name="anki-voice-tutor",
    version="0.1.0",
    description="Hands-free voice review of Anki decks with a realtime tutor agent",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Right Learning",
    packages=find_namespace_packages(include=["src", "src.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        "requests>=2.28.0",
        # Realtime media (WebRTC)
        "aiortc>=1.6.0",
        "av>=11.0.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "voice-tutor=src.cli.voice_tutor:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Multimedia :: Sound/Audio :: Speech",
    ],
    keywords="anki spaced-repetition voice tutor realtime webrtc",
)
