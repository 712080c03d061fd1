#!/usr/bin/env python3

import os
from setuptools import setup, find_namespace_packages


here = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(here, 'README.md')) as f:
    README = f.read()


if __name__ == "__main__":
    setup(
        name = 'kube-ecr-scanner',
        setup_requires = ['setuptools_scm'],
        use_scm_version = { 'fallback_version': '0.1.0' },
        description = 'Tool for scanning the container images running in a Kubernetes cluster using AWS ECR.',
        long_description = README,
        long_description_content_type = 'text/markdown',
        classifiers = [
            "Programming Language :: Python",
            "Programming Language :: Python :: 3",
        ],
        keywords = 'container kubernetes image scan security vulnerability ecr',
        packages = find_namespace_packages(include = ['kubescan.*']),
        include_package_data = True,
        zip_safe = False,
        python_requires = '>=3.10',
        install_requires = [
            'boto3',
            'botocore',
            'django-flexi-settings',
            'httpx',
            'kubernetes_asyncio',
            'pydantic>=2',
            'pyyaml',
            'rich',
            'sortedcontainers',
            'typer',
        ],
        extras_require = {
            'test': [
                'pytest',
                'pytest-asyncio',
            ],
        },
        entry_points = {
            'console_scripts': [
                'kube-ecr-scanner = kubescan.ecr.cli:main',
            ],
        }
    )
