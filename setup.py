#!/usr/bin/env python
from setuptools import setup

setup(name='dedup',
      version='2.1',
      description='Find files with identical content in directory trees and replace duplicates with hard links',
      author='Chad Netzer',
      author_email='chad.netzer+hardlinkable@gmail.com',
      py_modules=["dedup"],
      python_requires=">=3.8",
      test_suite="tests",
      entry_points={
          'console_scripts': ['dedup=dedup:main']
      },
      classifiers=(
          "License :: OSI Approved :: GNU General Public License v2 or later (GPLv2+)",
          "Programming Language :: Python :: 3",
          "Operating System :: POSIX",
          "Operating System :: MacOS",
          "Operating System :: MacOS :: MacOS X",
          "Operating System :: Unix",
      ),
)
