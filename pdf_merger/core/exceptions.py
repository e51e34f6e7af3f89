"""Custom exceptions for PDF merge operations.

All error messages are written in plain English so users know exactly
what went wrong and how to fix it.
"""

from typing import Optional


class PDFMergeError(Exception):
    """Base exception for all PDF merge errors."""

    error_type: str = "PDFMergeError"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationError(PDFMergeError):
    """Upload or request rejected before any state was touched.

    User-friendly message examples:
    - "File size exceeds 50MB limit"
    - "Invalid file type. Only PDF files are allowed."
    """

    error_type: str = "ValidationError"
    status_code: int = 400

    @staticmethod
    def too_many_files(limit: int) -> "ValidationError":
        return ValidationError(
            f"Maximum {limit} files allowed. Merge or remove some files first."
        )


class NotFoundError(PDFMergeError):
    """Unknown or foreign file/download id, or no session yet."""

    error_type: str = "NotFoundError"
    status_code: int = 404

    @staticmethod
    def session_missing() -> "NotFoundError":
        return NotFoundError("Session expired. Please upload your files again.")

    @staticmethod
    def files_missing() -> "NotFoundError":
        return NotFoundError("One or more files not found. Please re-upload.")

    @staticmethod
    def for_file(original_name: str) -> "NotFoundError":
        return NotFoundError(f'File "{original_name}" not found on server.')

    @staticmethod
    def download_missing() -> "NotFoundError":
        return NotFoundError("Download not found or expired")


class ExpiredError(PDFMergeError):
    """Merged artifact aged out of its download window."""

    error_type: str = "ExpiredError"
    status_code: int = 410

    @staticmethod
    def download_expired() -> "ExpiredError":
        return ExpiredError("Download has expired. Please merge your files again.")


class MergeFailure(PDFMergeError):
    """A source file could not be read, even after normalization.

    The whole merge aborts and no source file is consumed, so the user can
    remove or replace the offending file and retry.
    """

    error_type: str = "MergeFailure"
    status_code: int = 422

    def __init__(
        self,
        message: str,
        file_name: str = "",
        detail: str = "",
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, original_error)
        self.file_name = file_name
        self.detail = detail

    @staticmethod
    def unsupported_compression(file_name: str, detail: str = "") -> "MergeFailure":
        """Create error for a file whose streams cannot be decoded."""
        return MergeFailure(
            f'The file "{file_name}" uses advanced PDF compression that cannot be processed. '
            f'Please try re-saving it as PDF 1.4 compatible or using "Print to PDF" '
            f"to create a simpler version.",
            file_name=file_name,
            detail=detail,
        )

    @staticmethod
    def damaged(file_name: str, detail: str = "") -> "MergeFailure":
        """Create error for a structurally broken or locked file."""
        base_msg = f'The file "{file_name}" is damaged or locked and cannot be merged.'
        if detail:
            return MergeFailure(f"{base_msg} Issue: {detail}", file_name=file_name, detail=detail)
        return MergeFailure(
            f"{base_msg} Try opening it in a PDF viewer and re-saving it, "
            f"or remove it from the list.",
            file_name=file_name,
        )


class StorageError(PDFMergeError):
    """Disk or directory failure. Fatal for the current request only."""

    error_type: str = "StorageError"
    status_code: int = 500

    @staticmethod
    def write_failed(what: str, original_error: Optional[Exception] = None) -> "StorageError":
        return StorageError(f"Failed to save {what}. Please try again.", original_error)
