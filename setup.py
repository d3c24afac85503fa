from setuptools import setup, find_packages

setup(
    name="sccspin",
    version="0.1.0",
    description="Spin resolved self-consistent-charge engine for DFTB-style tight binding in PyTorch.",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "torch",
        "numpy",
        "scipy",
        "pandas"
    ],
    extras_require={"test": ["pytest"]},
    python_requires=">=3.8",
    include_package_data=True,
    zip_safe=False,
)
