"""
Setup configuration for the appliedmotion library.

This is a pure Python library with no host-runtime dependencies.
It can be installed via:
    - pip install .
    - pip install -e .  (for development)
"""

from setuptools import setup, find_packages

setup(
    name='appliedmotion-st',
    version='0.1.0',
    packages=find_packages(exclude=['test', 'tests']),

    install_requires=[
        'setuptools',
        'pyserial>=3.5',
    ],

    extras_require={
        'dev': [
            'pytest>=7.0',
            'pytest-cov',
            'pytest-timeout',
        ],
    },

    zip_safe=True,

    maintainer='Eyas Taifour',
    maintainer_email='etaifour@me.com',
    description='Python driver for Applied Motion Products ST stepper drives (eSCL over TCP or serial)',
    long_description=open('README.md').read() if __import__('os').path.exists('README.md') else '',
    long_description_content_type='text/markdown',
    license='MIT',

    tests_require=['pytest'],

    entry_points={
        'console_scripts': [
            'appliedmotion-st = appliedmotion.cli:main',
        ],
    },

    python_requires='>=3.8',

    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Topic :: Scientific/Engineering',
    ],
)
