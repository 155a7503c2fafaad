from setuptools import setup


setup(
    name="songsheet",
    version="0.3.0",
    description="Ingest messy song spreadsheets, consolidate duplicates and enrich them in resumable batches",
    packages=["songsheet"],
    include_package_data=True,
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "requests",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
    },
    entry_points={
        "console_scripts": [
            "songsheet=songsheet.cli:main",
        ]
    },
)
