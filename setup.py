#!/usr/bin/python3
# SPDX-License-Identifier: LGPL-2.1-or-later

from setuptools import setup, find_packages

setup(
    name="bootimg",
    version="1",
    description="Build bootable disk images from gadget trees",
    license="LGPLv2+",
    python_requires=">=3.9",
    packages = find_packages(".", exclude=["tests"]),
    install_requires = ["PyYAML"],
    extras_require = { "test": ["pytest"] },
    entry_points = { "console_scripts": ["bootimg = bootimg.__main__:main"] },
)
