from setuptools import setup, find_packages

# Open README.md with UTF-8 encoding to avoid decoding issues
with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="swtve",
    version="0.1.0",
    description="Time-varying treatment effect estimation for stepped-wedge cluster randomized trials.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["swtve", "swtve.*"]),
    include_package_data=True,
    install_requires=[
        "pandas",
        "numpy",
        "scipy",
        "statsmodels",
        "pydantic>=2",
        "jax",
        "numpyro"
    ],
    extras_require={
        "test": ["pytest"],
    },
    classifiers=[  # Metadata about the package
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",  # Specify Python version compatibility
)
