from setuptools import setup, find_packages


install_requires = [
    "pysam>=0.18.0",
    "pyfaidx>=0.5.5.2",
    "biopython>=1.73",  # pyfaidx needs this for reading bgzipped FASTA files
    "xopen>=1.2.0",
]

setup(
    name="mitopileup",
    version="0.3.0",
    description="Heteroplasmy detection and consensus building for mitochondrial sequencing data",
    python_requires=">=3.8",
    packages=find_packages(include=["mitopileup", "mitopileup.*"]),
    install_requires=install_requires,
    extras_require={
        "test": ["pytest", "hypothesis"],
    },
    entry_points={"console_scripts": ["mitopileup = mitopileup.__main__:main"]},
)
