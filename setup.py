#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

import os

from setuptools import find_namespace_packages, setup

ENGINE_SRC_DIR = os.path.join("src", "snowflake", "engine")

VERSION = (1, 1, 1, None)  # Default
with open(os.path.join(ENGINE_SRC_DIR, "version.py"), encoding="utf-8") as f:
    exec(f.read())
version = ".".join([str(v) for v in VERSION if v is not None])

with open("DESIGN.md", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="snowflake-driver-engine",
    version=version,
    description="Network, authentication and result chunk engine of a Snowflake driver",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Snowflake, Inc",
    author_email="triage-snowpark-python-api-dl@snowflake.com",
    license="Apache-2.0",
    license_files=["LICENSE.txt"] if os.path.exists("LICENSE.txt") else [],
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Topic :: Database",
    ],
    python_requires=">=3.9",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["snowflake.engine*"]),
    zip_safe=False,
    install_requires=[
        "requests<3.0.0",
        "urllib3>=1.21.1,<3",
        "pyjwt<3.0.0",
        "cryptography>=3.1.0",
        "ijson>=3.1",
        "typing_extensions>=4.3,<5",
    ],
    extras_require={
        "development": [
            "pytest<7.5.0",
            "pytest-cov",
        ],
    },
)
