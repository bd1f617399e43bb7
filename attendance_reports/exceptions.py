"""
Exceptions raised by the reporting engine.

Callers surface any ReportError as "report could not be generated".
"""


class ReportError(Exception):
    """Base exception class for the reporting engine"""
    def __init__(self, message="Report could not be generated"):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(ReportError, ValueError):
    """Raised when the organization, filter bounds or credentials are missing or invalid"""
    def __init__(self, message="Invalid report configuration"):
        super().__init__(message)


class StoreError(ReportError):
    """Raised when a query against the underlying store fails"""
    def __init__(self, message="Store query failed"):
        super().__init__(message)


class ReportTimeoutError(ReportError):
    """Raised when report generation exceeds its deadline"""
    def __init__(self, message="Report generation timed out"):
        super().__init__(message)


class ReportCancelledError(ReportError):
    """Raised when the caller cancels report generation"""
    def __init__(self, message="Report generation was cancelled"):
        super().__init__(message)
