"""
Error Handling System
Provides consistent error reporting for the scanning loop
"""
import logging

logger = logging.getLogger(__name__)


class ScannerError(Exception):
    """Base exception for scanner errors"""
    def __init__(self, message, error_code, details=None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Convert error to JSON-serializable dict"""
        return {
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


# Input device errors - fatal to the session
class InputDeviceError(ScannerError):
    """Camera input could not be found or configured"""
    def __init__(self, message="No usable camera input", error_code="INPUT_DEVICE", details=None):
        super().__init__(message=message, error_code=error_code, details=details)


class NoCameraAvailableError(InputDeviceError):
    """No lens and no system default camera exist"""
    def __init__(self, preference=None):
        super().__init__(
            message="No camera available for scanning",
            error_code="NO_CAMERA_AVAILABLE",
            details={
                "preference": preference,
                "suggestion": "Check camera connection and the configured lens map"
            }
        )


class LensConfigurationError(InputDeviceError):
    """A lens could not be opened, locked or configured"""
    def __init__(self, lens_type, reason=None):
        super().__init__(
            message=f"Failed to configure {lens_type} lens",
            error_code="LENS_CONFIGURATION_FAILED",
            details={
                "lens_type": lens_type,
                "reason": reason,
                "suggestion": "Ensure no other app is using the camera"
            }
        )


class SwitchRollbackError(InputDeviceError):
    """Switching lenses failed and the previous input could not be restored"""
    def __init__(self, from_type, to_type, reason=None):
        super().__init__(
            message=f"Failed to restore {from_type} lens after switching to {to_type} failed",
            error_code="SWITCH_ROLLBACK_FAILED",
            details={
                "from_type": from_type,
                "to_type": to_type,
                "reason": reason,
                "suggestion": "Restart the scanning session"
            }
        )


# Authorization errors - fatal, never retried
class AuthorizationError(ScannerError):
    """Camera access was denied"""
    def __init__(self, device=None):
        super().__init__(
            message="Camera access denied",
            error_code="CAMERA_AUTHORIZATION_DENIED",
            details={
                "device": device,
                "suggestion": "Grant read/write access to the video device (e.g. add the user to the 'video' group)"
            }
        )


# Capture errors - session stays usable
class CaptureError(ScannerError):
    """A triggered photo capture produced no image"""
    def __init__(self, reason=None):
        super().__init__(
            message="Failed to capture photo",
            error_code="CAPTURE_FAILED",
            details={
                "reason": reason,
                "suggestion": "Hold the document still and try again"
            }
        )


class ConfigurationError(ScannerError):
    """Invalid scanner configuration value"""
    def __init__(self, field, value, reason):
        super().__init__(
            message=f"Invalid configuration for {field}: {reason}",
            error_code="INVALID_CONFIGURATION",
            details={
                "field": field,
                "value": value,
            }
        )


# Error reporting helper
def handle_error(error, log_message=None):
    """
    Log a scanner error consistently across the scanner

    Args:
        error: ScannerError that occurred
        log_message: Optional custom log message

    Returns:
        dict: Error description suitable for the presentation layer
    """
    if log_message:
        logger.error(log_message)

    logger.error(f"{error.error_code}: {error.message}")
    if error.details:
        logger.debug(f"Error details: {error.details}")
    return error.to_dict()
