#!/usr/bin/env python
from setuptools import setup
setup(
    name='multihttp',
    version='2.0',
    description='Parallel HTTP Requests over cURL',
    author='Six Apart',
    author_email='python@sixapart.com',
    url='http://sixapart.github.com/batchhttp/',

    packages=['multihttp'],
    python_requires='>=3.7',
    install_requires=['httplib2>=0.4.0', 'pycurl>=7.45'],
    extras_require={
        'test': ['pytest'],
    },
)
