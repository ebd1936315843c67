"""
Exception hierarchy shared by the HTTP layer and the document services.
"""

from typing import Any, Dict, Optional, Union

from fastapi.responses import JSONResponse


class ServiceError(Exception):
    """Base class for errors that map onto a JSON error response"""

    status_code = 500

    def __init__(self, message: str, error_type: str,
                 details: Union[str, Dict[str, Any], None] = None,
                 status_code: Optional[int] = None):
        self.message = message
        self.error_type = error_type
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidRequestError(ServiceError):
    """Missing or malformed request data"""
    status_code = 400


class ImageProcessingError(ServiceError):
    """Errors related to acquiring, validating or re-encoding images"""
    status_code = 400


class DocumentGenerationError(ServiceError):
    """Errors related to PDF or workbook rendering"""
    pass


class MailDeliveryError(ServiceError):
    """SMTP failures, carrying what the relay reported"""

    def __init__(self, details: str, smtp: Optional[Dict[str, Any]] = None):
        super().__init__(
            message="Erreur lors de l'envoi de l'email",
            error_type="smtp_error",
            details=details,
        )
        self.smtp = smtp or {}


def create_error_response(error: ServiceError, status_code: Optional[int] = None) -> JSONResponse:
    """Create a structured error response"""
    content = {
        "success": False,
        "error": error.message,
        "error_type": error.error_type,
    }
    if error.details is not None:
        content["details"] = error.details
    if isinstance(error, MailDeliveryError) and error.smtp:
        content["smtp"] = error.smtp
    return JSONResponse(
        status_code=status_code or error.status_code,
        content=content
    )
