from setuptools import find_namespace_packages, setup  # type: ignore

setup(
    name="lassosum",
    version="0.1.0",
    description="Polygenic risk scores from summary statistics and a reference panel with lassosum",
    package_dir={"": "python"},
    packages=find_namespace_packages(where="python", include=["lassosum", "lassosum.*"], exclude=["*.tests"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy",
        "pandas",
        "pyarrow",
        "scipy",
        "statsmodels",
        "msgspec",
        "ruamel.yaml",
        "psutil",
    ],
    extras_require={"test": ["pytest"]},
    zip_safe=False,
)
