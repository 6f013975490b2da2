"""Install the OIDC gatekeeper."""

from setuptools import setup, find_packages

setup(
    name='oidc-gatekeeper',
    version='0.1.0',
    packages=find_packages(include=['oidc_gatekeeper', 'oidc_gatekeeper.*']),
    scripts=['bin/oidc-gatekeeper'],
    python_requires='>=3.10',
    install_requires=[
        "fastapi",
        "starlette",
        "pydantic>=2",
        "python-json-logger>=3.1",
        "requests",
        "uvicorn>=0.24",
    ],
    extras_require={
        'test': [
            "pytest<9",
            "pytest-asyncio",
            "pytest-mock",
            "httpx",
        ],
    },
    zip_safe=False
)
