from setuptools import setup, find_packages
from pathlib import Path

# Read the README file for the long description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    name="crepo",
    version="0.1.0",
    description="A hierarchical, typed content repository on SQLAlchemy + SQLite",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["crepo", "crepo.*"]),
    entry_points={
        "console_scripts": [
            "crepo=crepo.cli:app"
        ],
    },
    install_requires=[
        # Core dependencies only
        "sqlalchemy>=2.0.0",
        "typer>=0.9.0",
        "rich>=13.0.0",
        "tzdata>=2023.3",  # IANA zones for zoneinfo where the OS has none
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ]
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires='>=3.9',
)
