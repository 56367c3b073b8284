from setuptools import setup


setup(
    name="survey-doctor",
    version="0.1.0",
    description="Local validation and auto-repair for pavement survey uploads (deflection and LTE sheets)",
    packages=["survey_doctor"],
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "rapidfuzz",
    ],
    entry_points={
        "console_scripts": [
            "survey-doctor=survey_doctor.cli:main",
        ]
    },
)
