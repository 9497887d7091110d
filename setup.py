#
# Copyright 2026 The ormdecl Authors
# Distributed under the Apache License, Version 2.0. See LICENSE for more info.
#

""" Installation script for the ormdecl package.
"""

from setuptools import setup, find_packages
import re
import io

__version__ = re.search(
    r'__version__\s*=\s*[\'"]([^\'"]*)[\'"]',
    io.open('ormdecl/core/__init__.py', encoding='utf_8_sig').read()
    ).group(1)


url = "https://github.com/ormdecl/ormdecl"
author = 'The ormdecl Authors'


setup(
    name='ormdecl',
    description='Declarative object-relational mapping: searches, creates, updates and deletes from a schema '
                'declaration.',
    long_description='For further information, visit the project [homepage](%s).' % url,
    long_description_content_type='text/markdown',
    url=url,
    author=author,
    maintainer=author,
    version=__version__,
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={
        'ormdecl.core': ['schemas/*.schema.json']
    },
    python_requires='>=3.8, <4',
    entry_points={
        'console_scripts': [
            'ormdecl-cli = ormdecl.core.orm_cli:main',
        ]
    },
    install_requires=[
        'SQLAlchemy>=2.0',
        'portalocker>=1.2.1',
        'jsonschema>=3.1'
    ],
    extras_require={
        'test': ['pytest']
    },
    license='Apache 2.0',
    classifiers=[
        'Intended Audience :: Developers',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: POSIX',
        'Operating System :: MacOS :: MacOS X',
        'Operating System :: Microsoft :: Windows',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12'
    ]
)
