from setuptools import setup, find_packages

setup(
    name="adcommand-kit",
    version="0.1.0",
    packages=find_packages(include=["adcommand_kit", "adcommand_kit.*"]),
    install_requires=[
        "httpx",
        "pydantic>=2",
        "openai>=1",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-asyncio",
        ]
    },
    entry_points={
        "console_scripts": [
            "adcommand-run=adcommand_kit.run_command:cli",
        ],
    },
    author="Flexus Team",
    author_email="",
    description="Natural-language command executor for Facebook ads",
    long_description="Executes natural-language Facebook ads commands through a tool-calling chat model, with auto-fixes, bounded retries and a streamed step timeline",
    long_description_content_type="text/markdown",
    url="https://github.com/smallcloudai/flexus",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
