from setuptools import setup


def _read_version() -> str:
    with open("VERSION", "r", encoding="utf-8") as f:
        return f.read().strip()


setup(name = "talkshare" ,
      version = _read_version() ,
      description = "Share Nextcloud files as public links or into Talk conversations" ,
      python_requires = ">=3.9" ,
      py_modules = ["ocsresponse", "talkshare"] ,
      install_requires = ["requests", "pyncclient", "pydantic>=2"] ,
      extras_require = {"test": ["pytest"]} ,
      entry_points = {"console_scripts": ["talkshare = talkshare:main"]})
