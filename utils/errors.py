from fastapi import status

class ErrorDetail:
    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message

class ErrorCode:
    """System error code and message definitions"""

    # Common errors
    COMMON_INTERNAL_ERROR = ErrorDetail(status.HTTP_500_INTERNAL_SERVER_ERROR, "COMMON_INTERNAL_ERROR", "An unexpected internal server error occurred.")
    COMMON_NOT_FOUND = ErrorDetail(status.HTTP_404_NOT_FOUND, "COMMON_NOT_FOUND", "The requested resource does not exist")
    COMMON_VALIDATION_ERROR = ErrorDetail(status.HTTP_400_BAD_REQUEST, "COMMON_VALIDATION_ERROR", "Data validation failed")
    COMMON_SERVICE_UNAVAILABLE = ErrorDetail(status.HTTP_503_SERVICE_UNAVAILABLE, "COMMON_SERVICE_UNAVAILABLE", "Service unavailable")

    # Trusted range related errors
    IP_MATCHER_UNAVAILABLE = ErrorDetail(status.HTTP_503_SERVICE_UNAVAILABLE, "IP_MATCHER_UNAVAILABLE", "Trusted IP range matcher is not configured")
    IP_INVALID_ADDRESS = ErrorDetail(status.HTTP_400_BAD_REQUEST, "IP_INVALID_ADDRESS", "Invalid IP address")
