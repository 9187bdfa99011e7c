# -*- coding: utf-8 -*-
# Copyright (c) 2019 The HERA Collaboration
# Licensed under the 2-clause BSD License

from setuptools import setup, find_packages

package_name = "archive_proxy"

packages = find_packages(exclude=["tests", "tests.*"])

core_reqs = [
    "loguru",
    "notifiers",
    "pydantic>=2.0",
    "pydantic-settings",
]

globus_reqs = [
    "globus-sdk>=3.0,<4.0",
]

s3_reqs = [
    "boto3",
    "botocore",
    "s3transfer",
]

test_reqs = [
    "pytest",
]

all_reqs = globus_reqs + s3_reqs

setup(
    name=package_name,
    version="1.0.0",
    author="HERA Team",
    author_email="hera@lists.berkeley.edu",
    license="BSD",
    description="Data transfer proxies between a data management layer and remote archives",
    long_description="""\
Data transfer proxies move archived data objects between a data management
layer and remote storage. A Globus proxy submits asynchronous transfers
between endpoints, and an S3 proxy moves files to and from object stores.
Both share one interface for upload, download, transfer status and remote
path attributes.
""",
    install_requires=core_reqs + all_reqs,
    tests_require=test_reqs,
    packages=packages,
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: BSD License",
        "Topic :: System :: Archiving",
    ],
    extras_require={
        "globus": globus_reqs,
        "s3": s3_reqs,
        "all": all_reqs,
        "test": test_reqs,
    },
    entry_points={"console_scripts": ["archive-proxy=archive_proxy.cli:main"]},
    include_package_data=True,
    zip_safe=False,
)
