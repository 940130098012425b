"""Custom exceptions for the sentiment signal API."""

from __future__ import annotations


class SentimentAPIError(Exception):
    """Base exception for all sentiment signal API errors."""

    status_code: int = 500

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__


class DataSourceError(SentimentAPIError):
    """News or brokerage data could not be fetched."""

    status_code = 502


class BrokerageAuthError(DataSourceError):
    """Brokerage rejected the credentials — affects every symbol."""


class ClassifierError(SentimentAPIError):
    """A single text could not be classified."""

    status_code = 503


class ClassifierUnavailableError(ClassifierError):
    """The sentiment model is not loaded."""


class ValidationError(SentimentAPIError):
    """Malformed or missing configuration."""


class AnalysisTimeoutError(SentimentAPIError, TimeoutError):
    """The analysis request exceeded its deadline."""

    status_code = 504
