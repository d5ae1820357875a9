#!/usr/bin/env python3
"""
Setup script for mailrelay.

Build-system requirements and pytest configuration live in pyproject.toml;
package metadata and dependencies are declared here.
"""

import re
import sys
from pathlib import Path

if sys.version_info < (3, 11):
    sys.exit("Error: mailrelay requires Python 3.11 or higher.")

from setuptools import find_packages, setup

HERE = Path(__file__).parent

# Read version from __version__.py for consistency
version_content = (HERE / "src" / "mailrelay" / "__version__.py").read_text(encoding="utf-8")
version_match = re.search(r'^__version__\s*=\s*["\']([^"\']+)["\']', version_content, re.M)
version = version_match.group(1) if version_match else "0.1.0"

# Read long description from README if available
readme_path = HERE / "README.md"
if readme_path.exists():
    long_description = readme_path.read_text(encoding="utf-8")
    long_description_content_type = "text/markdown"
else:
    long_description = "Authenticated HTTP to SMTP relay with attachment screening"
    long_description_content_type = "text/plain"

# Core dependencies
install_requires = [
    "Flask>=3.0.0",
    "flask-cors>=4.0.0",
    "pydantic>=2.5.0",
    "pydantic-settings>=2.7.0",
    "email-validator>=2.1.0",
    "aiosmtplib>=3.0.0",
    "requests>=2.31.0",
    "python-dotenv>=1.0.0",
    "sentry-sdk[flask]>=2.0.0",
]

extras_require = {
    # Redis-backed rate limiting for multi-process deployments
    "redis": [
        "redis>=5.0.0",
    ],
    "dev": [
        "pytest>=7.4.0",
        "pytest-asyncio>=0.23.0",
        "pytest-cov>=4.1.0",
        "black>=23.0.0",
        "flake8>=6.1.0",
        "mypy>=1.7.0",
    ],
}

setup(
    name="mailrelay",
    version=version,
    description="Authenticated HTTP to SMTP relay with attachment screening",
    long_description=long_description,
    long_description_content_type=long_description_content_type,
    author="mailrelay contributors",
    license="MIT",
    python_requires=">=3.11",
    packages=find_packages("src"),
    package_dir={"": "src"},
    install_requires=install_requires,
    extras_require=extras_require,
    entry_points={
        "console_scripts": [
            "mailrelay=mailrelay.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Email",
    ],
    keywords=["email", "smtp", "relay", "flask", "virustotal"],
)
