from .csv_file import CsvFileSource
from .http_json import HttpJsonSource
from .json_file import JsonFileSource

__all__ = [
    "CsvFileSource",
    "HttpJsonSource",
    "JsonFileSource",
]
