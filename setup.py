from setuptools import setup


setup(
    name="oc-consolidator",
    version="0.1.0",
    description="Consolidate main and detail purchase-order spreadsheets and upsert them into an order store",
    packages=["oc_consolidator"],
    python_requires=">=3.9",
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
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "oc-consolidator=oc_consolidator.cli:main",
        ]
    },
)
