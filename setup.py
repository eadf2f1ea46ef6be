from setuptools import setup, find_packages


setup(
    name="rparc",
    version="0.1",
    packages=find_packages(),
    description="Read, build and rewrite Ren'Py archives (.rpa).",
    author="rparc contributors",
    python_requires=">=3.8",
    install_requires=[],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "rparc=rparc.cli:main",
        ]
    },
)
