from setuptools import setup


setup(
    name="event-doctor",
    version="0.1.0",
    description="Local CSV bulk import, correction and reconciliation for intervention events",
    packages=["event_doctor"],
    python_requires=">=3.10",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
    ],
    entry_points={
        "console_scripts": [
            "event-doctor=event_doctor.cli:main",
        ]
    },
)
