from setuptools import find_namespace_packages, setup

name = "rule_anon"
version = "1.0.0"
install_requires = [
    "asyncpg",
    "pyyaml",
    "pydantic>=2",
    "prettytable",
    "concurrent-log-handler",
]


if __name__ == "__main__":
    setup(
        name=name,
        version=version,
        description="Rule driven database anonymization tool",
        classifiers=[
            "Intended Audience :: Developers",
            "Intended Audience :: System Administrators",
            "Programming Language :: Python",
            "Programming Language :: Python :: 3",
            "Topic :: Database",
        ],
        keywords="database anonymization tool",
        python_requires=">=3.9",
        packages=find_namespace_packages(include=["rule_anon", "rule_anon.*"]),
        package_data={"rule_anon.resources": ["*.txt"]},
        include_package_data=True,
        install_requires=install_requires,
        extras_require={
            "test": ["pytest"],
        },
        entry_points={
            "console_scripts": [
                "rule_anon = rule_anon.cli:main",
            ],
        },
    )
