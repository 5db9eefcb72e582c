#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='django-ldapsync',
    version='0.3.0',
    description='Generic list filtering and LDAP user provisioning for Django admin dashboards',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['django', 'ldap', 'provisioning'],
    author="Caltech IMSS ADS",
    author_email="imss-ads-staff@caltech.edu",
    url='https://github.com/caltechads/django-ldapsync',
    packages=find_packages(exclude=['bin']),
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        'django>=4.2',
        'ldap_filter',
        'python-ldap',
    ],
    extras_require={
        'test': [
            'pytest',
            'python-ldap-faker',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Framework :: Django",
    ],
)
