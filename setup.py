from setuptools import setup


setup(
    name="snapshot-doctor",
    version="0.1.0",
    description="Gap filling and cumulative consistency repair for periodic monitoring snapshot workbooks",
    packages=["snapshot_doctor", "snapshot_doctor.fill_modules"],
    python_requires=">=3.10",
    install_requires=[
        "pandas",
        "openpyxl",
        "structlog",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "all": ["xlrd"],
    },
    entry_points={
        "console_scripts": [
            "snapshot-doctor=snapshot_doctor.cli:main",
        ]
    },
)
