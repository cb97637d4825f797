class AtlasError(Exception):
    """Base exception for Atlas submittal ingestion errors."""
    pass

class ConfigError(AtlasError):
    """Configuration loading specific errors."""
    pass

class DataSourceError(AtlasError):
    """Spreadsheet source could not be read or decoded."""
    pass

class NoSheetsError(DataSourceError):
    """The workbook holds no worksheets (or the file is empty)."""
    pass

class ExtractionError(AtlasError):
    """Sheet-level extraction failures."""
    pass

class HeaderNotFound(ExtractionError):
    """No row within the scan limit looks like a header row."""

    def __init__(self, message: str, scanned_rows: int = 0, best_row: int | None = None):
        super().__init__(message)
        self.scanned_rows = scanned_rows
        self.best_row = best_row

class UnknownDatasetError(ConfigError):
    """Requested dataset key is not configured."""

    def __init__(self, key: str):
        super().__init__(f"Unknown dataset '{key}'")
        self.key = key

class UnknownProjectError(ConfigError):
    """No configured dataset belongs to the requested project."""

    def __init__(self, project: str):
        super().__init__(f"Unknown project '{project}'")
        self.project = project
