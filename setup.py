# -*- coding: utf-8 -*-
"""vaultwarden_k8s_sync a module for syncing vault items into kubernetes secrets.

This module reads items from a Vaultwarden (Bitwarden) vault and keeps opaque
kubernetes secrets in the namespaces the items name in step with them.

"""

import setuptools
import re
from io import open

VERSIONFILE="vaultwarden_k8s_sync/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))

with open("README.md", "r", encoding='utf-8') as fh:
    long_description = fh.read()

setuptools.setup(
    name='vaultwarden_k8s_sync',
    version=verstr,
    author="Mike Moore",
    author_email="z_z_zebra@yahoo.com",
    description="Sync Vaultwarden vault items into Kubernetes secrets, keeping keys owned by other tools",
    long_description_content_type="text/markdown",
    long_description=long_description,
    url="https://github.com/Mikemoore63/vaultwarden-k8s-sync",
    packages=setuptools.find_packages(exclude=["*.tests", "*.tests.*"]),
    extras_require={
        "test": ["pytest",
                 "pytz>=2022.0"],
    },
    include_package_data=True,
    license="MIT",
    scripts=[],
    install_requires=[
        "kubernetes>=24.0",
        "tenacity>=8.0",
        "python-dateutil~=2.0",
    ],
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],

)
