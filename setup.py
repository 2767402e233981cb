"""Setup script for typefun."""
from setuptools import setup, find_packages  # type: ignore
import typefun

setup(
    name='typefun',
    version=typefun.version,
    description='A reduction engine for type functions in a gradual type checker',  # noqa
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    license='MIT',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Software Development :: Compilers',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.12',
    ],
    keywords='type-checker type-functions',
    python_requires='>=3.12',
    packages=find_packages(),  # type: ignore
    install_requires=[
        'typing-extensions>=4',
    ],
    test_suite='nose.collector',
    tests_require=[
        'coverage>=6.4.4',
        'hypothesis>=6',
        'nose',
    ],
    extras_require={
        'test': ['coverage>=6.4.4', 'hypothesis>=6', 'nose'],
        'dev': ['axblack==20220330', 'mypy>=1.1.1', 'pre-commit>=2.6.0,<3'],
    },
)
