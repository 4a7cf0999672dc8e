import pathlib
import sys

from setuptools import find_packages, setup


__author__ = "The phylopat developers"
__copyright__ = "Copyright 2026, The phylopat Project"
__license__ = "BSD-3"
__status__ = "Development"

# Check Python version, no point installing if unsupported version inplace
min_version = (3, 10)
if sys.version_info < min_version:
    py_version = ".".join(str(n) for n in sys.version_info)
    msg = (
        f"Python-{'.'.join(map(str, min_version))} or greater is required, "
        f"Python-{py_version} used."
    )
    raise RuntimeError(msg)


short_description = "Pattern-compressed sequence alignments and model definitions"

readme_path = pathlib.Path(__file__).parent / "README.md"

long_description = readme_path.read_text()

version_path = pathlib.Path(__file__).parent / "src" / "phylopat" / "_version.py"
__version__ = version_path.read_text().split("=")[-1].strip().strip('"')

PACKAGE_DIR = "src"

setup(
    name="phylopat",
    version=__version__,
    description=short_description,
    long_description=long_description,
    long_description_content_type="text/markdown",
    platforms=["any"],
    license=__license__,
    keywords=[
        "biology",
        "phylogeny",
        "alignment",
        "evolution",
        "bioinformatics",
    ],
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: BSD License",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    packages=find_packages(where="src"),
    package_dir={"": PACKAGE_DIR},
    python_requires=">=3.10",
    install_requires=[
        "numpy",
        "numba>0.53",
        "scipy",
        "scitrack",
        "tqdm",
        "typing_extensions",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-cov",
        ],
        "dev": [
            "black",
            "isort",
            "numpydoc",
            "pytest",
            "pytest-cov",
        ],
    },
)
