from setuptools import find_packages, setup

# Minimal setup.py to allow pip installation in environments (like p4a) that
# default to legacy builds and need explicit python_requires.

package_list = find_packages(
  include=[
    "alarm_schedule",
    "alarm_schedule.*",
    "delivery",
    "delivery.*",
    "entrypoints",
    "entrypoints.*",
    "backend",
    "backend.*",
    "os_interfaces",
    "os_interfaces.*",
  ]
)

setup(
  name="nightcap",
  version="0.1.0",
  description="Bedtime reminder alarms with reliable, at-most-once delivery",
  python_requires=">=3.11",
  packages=package_list,
  include_package_data=True,
  install_requires=[
    "fastapi==0.119.0",
    "uvicorn[standard]",
    "pyyaml",
    "pydantic",
    "python-dotenv",
    "platformdirs",
    "asgi-correlation-id",
    "slowapi",
  ],
  extras_require={
    "android": ["pyjnius", "cython==3.0.12", "buildozer"],
    "linux": ["desktop-notifier", "pystemd"],
    "dev": ["pytest", "pytest-asyncio", "pytest-cov", "httpx"],
  },
  entry_points={
    "console_scripts": [
      "nightcap=alarm_schedule.main_linux:run",
      "nightcap-server=entrypoints.nightcap_linux:main",
    ],
  },
)
