from setuptools import setup, find_packages

setup(
    name="devpersist",
    version="0.1.0",
    description="Save/load persistence for devcade games, locally or through the devcade backend",
    author="devpersist contributors",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*", "scripts"]),
    install_requires=[
        "python-dotenv>=1.0.0",
        "typer>=0.9.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "devpersist=devpersist.main:devpersist",
        ],
    },
    python_requires=">=3.10",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)
