from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_path = Path("README.md")
long_description = readme_path.read_text(encoding="utf-8")

# Read requirements file
requirements_path = Path("requirements.txt")
requirements = [
    line.strip()
    for line in requirements_path.read_text(encoding="utf-8").splitlines()
    if line.strip() and not line.startswith("#")
]

setup(
    name="magellan",
    version="0.1.0",
    author="Magellan Contributors",
    description="Redfish BMC discovery and hardware inventory collection tool",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
        "Environment :: Console",
        "Topic :: System :: Networking",
        "Topic :: System :: Hardware",
        "Topic :: System :: Systems Administration",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        'console_scripts': [
            'magellan=magellan.cli:main',
            'magellan-secrets=magellan.creds.cli:main',
        ]
    },
)
