#!/usr/bin/env python

# Project skeleton maintained at https://github.com/jaraco/skeleton

import setuptools

name = 'minirc'
description = 'Minimal IRC (Internet Relay Chat) client session for Python'

params = dict(
    name=name,
    use_scm_version=dict(fallback_version='1.0.0'),
    description=description or name,
    packages=setuptools.find_packages(),
    include_package_data=True,
    python_requires='>=3.8',
    install_requires=[
        'jaraco.logging',
        'jaraco.stream',
        'more_itertools',
    ],
    extras_require={
        'testing': [
            # upstream
            'pytest>=6,<9',
            'pytest-flake8',
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Topic :: Communications :: Chat :: Internet Relay Chat",
    ],
    entry_points={
        'console_scripts': [
            'minirc-watch = minirc.watch:main',
        ],
    },
)
if __name__ == '__main__':
    setuptools.setup(**params)
