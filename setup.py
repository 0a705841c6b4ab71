from setuptools import setup, find_packages

with open("requirements.txt", "r") as f:
    requirements = [line for line in f.read().splitlines() if line and not line.startswith("#")]

setup(
    name="wp-sync",
    version="0.1.0",
    packages=find_packages(include=["wp_sync", "wp_sync.*"]),
    include_package_data=True,
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        'console_scripts': [
            'wp-sync=wp_sync.cli:main',
        ],
    },
    author="Victor Gonzalez",
    author_email="victor@ttamayo.com",
    description="WordPress database sync between production, staging and development",
    keywords="wordpress, database, sync, deployment",
    python_requires=">=3.8",
)
