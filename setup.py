from setuptools import find_packages, setup

setup(
    name="clustermf",
    version="0.1.0",
    description="Cluster mean-field with orbital optimization",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.22.0",
        "scipy>=1.12.0",
        "pyscf>=2.0.0",
        "attrs",
        "cattrs",
        "pyyaml",
        "typing_extensions",
    ],
    extras_require={
        "test": ["pytest"],
        "doc": ["sphinx", "sphinx_autodoc_typehints", "furo"],
    },
)
