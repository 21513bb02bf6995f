from __future__ import annotations


class BinderyError(Exception):
    pass


class InvalidInputError(BinderyError):
    pass


class InvalidUrlError(InvalidInputError):
    pass


class DisallowedSchemeError(InvalidInputError):
    pass


class PrivateAddressError(InvalidInputError):
    pass


class InvalidEmailError(InvalidInputError):
    pass


class FetchFailure(BinderyError):
    pass


class FetchTimeoutError(FetchFailure):
    pass


class FetchTooLargeError(FetchFailure):
    pass


class FetchNetworkError(FetchFailure):
    pass


class FetchHttpError(FetchFailure):
    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExtractionFailure(BinderyError):
    pass


class AllUrlsFailedError(BinderyError):
    def __init__(self, failed_urls: list[str]) -> None:
        super().__init__("Could not extract content from any URL.")
        self.failed_urls = list(failed_urls)


class AssemblyTooLargeError(BinderyError):
    def __init__(self, *, size_bytes: int, limit_bytes: int) -> None:
        size_mb = size_bytes / 1024 / 1024
        super().__init__(
            f"EPUB is too large ({size_mb:.1f} MB). Try fewer or shorter articles."
        )
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class DeliveryError(BinderyError):
    pass


class MissingDestinationError(BinderyError):
    pass
