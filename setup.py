from setuptools import setup

setup(
    name="device-log-mcp",
    version="1.0.0",
    description="MCP server and library for aggregated iOS device app logs",
    author="Device Log MCP Contributors",
    package_dir={"": "src"},
    py_modules=[
        "broadcast",
        "device_log_aggregator",
        "device_log_mcp_server",
        "log_sources",
        "multiline",
        "source_classifier",
        "vis_decoder",
    ],
    python_requires=">=3.9",
    install_requires=[
        "mcp>=1.0.0,<2",
        "regex>=2023.0.0",
        "python-dateutil>=2.8.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "device-log-mcp-server=device_log_mcp_server:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
