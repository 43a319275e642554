import os
import setuptools

with open('README.md', 'r', encoding='utf-8') as fh:
    long_description = fh.read()


def read_requirements():
    current = os.path.dirname(os.path.realpath(__file__))
    requirement_path = current + '/requirements.txt'
    install_requires = []
    if os.path.isfile(requirement_path):
        with open(requirement_path) as f:
            install_requires = [line for line in f.read().splitlines()
                                if line and not line.startswith('#')]
    return install_requires


setuptools.setup(
    name='patientregistry',
    version='0.1.0',
    description='Client-local patient registry storage with change broadcast',
    install_requires=read_requirements(),
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
    entry_points={
        'console_scripts': [
            'patientregistry=patientregistry.cli:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.9',
    test_suite='tests',
)
