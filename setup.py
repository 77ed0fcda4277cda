"""Setup script for the Defense Admin backend."""

from setuptools import setup, find_packages
import os

# Read README for long description
def read_readme():
    readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_path):
        with open(readme_path, 'r', encoding='utf-8') as f:
            return f.read()
    return ''

# Read requirements
def read_requirements():
    req_path = os.path.join(os.path.dirname(__file__), 'requirements.txt')
    with open(req_path, 'r', encoding='utf-8') as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]

setup(
    name='defense-admin',
    version='0.1.0',
    description='Thesis defense committee administration and topic assignment engine',
    long_description=read_readme(),
    long_description_content_type='text/markdown',
    packages=find_packages(where='backend', exclude=['tests', 'tests.*']),
    package_dir={'': 'backend'},
    python_requires='>=3.10',
    install_requires=read_requirements(),
    extras_require={
        'dev': [
            'pytest>=7.4.0',
            'pytest-timeout>=2.2.0',
            'httpx>=0.25.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'defense-admin=defense_admin.cli:main',
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Education',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
    include_package_data=True,
    package_data={
        '': ['*.yaml', '*.json'],
    },
)
