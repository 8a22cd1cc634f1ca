"""
Validation utilities for inbound relay and channel payloads.
"""

from typing import Any, Dict, List, Optional


class ValidationUtils:
    """Common validation utilities."""
    
    @staticmethod
    def validate_required_fields(data: Dict[str, Any], required_fields: List[str]) -> Optional[str]:
        """Validate that all required fields are present in the data."""
        if not isinstance(data, dict):
            return f"Expected an object, got {type(data).__name__}"
        missing_fields = [field for field in required_fields if field not in data or data[field] is None]
        if missing_fields:
            return f"Missing required fields: {', '.join(missing_fields)}"
        return None
    
    @staticmethod
    def validate_identifier(value: Any, name: str) -> Optional[str]:
        """Validate a room or participant identifier."""
        if not isinstance(value, str) or not value:
            return f"{name} must be a non-empty string"
        return None
    
    @staticmethod
    def validate_description(description: Dict[str, Any], expected_type: str) -> Optional[str]:
        """Validate an offer or answer descriptor."""
        error = ValidationUtils.validate_required_fields(description, ['type', 'sdp'])
        if error:
            return error
        if description['type'] != expected_type:
            return f"Expected {expected_type} description, got {description['type']}"
        if not isinstance(description['sdp'], str) or len(description['sdp']) < 10:
            return "Invalid SDP in description"
        return None
