from setuptools import setup, find_packages

setup(
    name="rpcload",
    version="0.1.0",
    description="Concurrent RPC load-generation client",
    author="",
    packages=find_packages(exclude=["examples"]),
    install_requires=[
        "rpyc>=5.3.0",
        "psutil>=5.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    python_requires=">=3.8",
    entry_points={
        "console_scripts": [
            "rpcload=rpcload.runners.client:main",
        ],
    },
)
