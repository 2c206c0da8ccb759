from bloodfinder.models.user import User, UserRole, ApprovalStatus, BloodGroup
from bloodfinder.models.emergency_request import EmergencyRequest, DonorResponse
from bloodfinder.models.donation import DonationHistory
from bloodfinder.models.audit_log import AuditLog

__all__ = [
    "User",
    "UserRole",
    "ApprovalStatus",
    "BloodGroup",
    "EmergencyRequest",
    "DonorResponse",
    "DonationHistory",
    "AuditLog",
]
