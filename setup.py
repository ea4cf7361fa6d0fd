from setuptools import setup, find_packages

setup(
    name='langpad',
    version='0.1.0',
    description='Grammar playground that regenerates language tooling in background workers',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'pygments>=2.13.0',
        'toml>=0.10.2',
        'chardet>=5.0.0',
        'pyperclip>=1.8.2',
        'lzstring>=1.0.4',
        'lsprotocol>=2023.0.0',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    entry_points={
        'console_scripts': [
            'langpad = langpad.cli:main'
        ]
    },
    include_package_data=True,
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Programming Language :: Python :: 3.11',
    ],
    python_requires='>=3.11',
)
